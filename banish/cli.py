"""
banish command line tool

Generates a Python module from a machine source file, the same way the
code generator is driven from build scripts.
"""

import argparse
import logging
import sys
from pathlib import Path

from banish.codegen import CodeGenerator
from banish.compiler import validate
from banish.config import GENERATOR_CONFIG
from banish.errors import BanishError
from banish.parser import MachineParser


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='banish',
        description='Generate Python state machine code from banish machine sources'
    )
    parser.add_argument('source_file', help='Input machine source file')
    parser.add_argument('-o', '--output-dir', default='.',
                        help='Output directory for generated files')
    parser.add_argument('-t', '--template-dir', default=None,
                        help='Template directory (default: bundled templates)')
    parser.add_argument('--name', default=None,
                        help='Name of the generated machine function (default: file stem)')
    parser.add_argument('--strict', action='store_true',
                        help='Require every reachable state to reach a return')
    parser.add_argument('--trace', action='store_true',
                        help='Log state entries and transitions when the machine runs')
    parser.add_argument('--check', action='store_true',
                        help='Only parse and validate, do not write any file')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    # Check input file exists
    source_path = Path(args.source_file)
    if not source_path.exists():
        print(f"Error: machine source not found: {args.source_file}", file=sys.stderr)
        return 1

    expected_suffix = GENERATOR_CONFIG['output']['source_suffix']
    if source_path.suffix != expected_suffix:
        logging.info(f"{source_path.name} does not use the {expected_suffix} suffix")

    try:
        if args.check:
            model = MachineParser().parse_file(source_path)
            validate(model, check_reachability=args.strict)
            print(f"✓ {source_path.name}: {len(model.states)} states OK")
            return 0

        generator = CodeGenerator(template_dir=args.template_dir)
        generator.generate_file(
            source_path,
            args.output_dir,
            name=args.name,
            trace=args.trace,
            check_reachability=args.strict,
        )
    except BanishError as e:
        print(f"Error in {source_path.name}: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
