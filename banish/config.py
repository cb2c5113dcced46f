"""
banish Generator Configuration - Single Source of Truth

Names, file conventions and the generated-code header used by the code
generator and the command line tool. Change them here and regenerate.

Usage:
    from banish.config import GENERATOR_CONFIG
    print(GENERATOR_CONFIG['output']['suffix'])
"""

import keyword
import re

GENERATOR_CONFIG = {
    # Project Information
    'project': {
        'name': 'banish',
        'summary': 'Rule-based fixed-point state machines compiled to Python',
    },

    # Input / Output Conventions
    'output': {
        'source_suffix': '.banish',
        'suffix': '_machine.py',
        'template': 'machine.py.jinja2',
        'default_entry': 'machine',
    },

    # Identifiers owned by generated code; machine statements may not bind them
    'engine': {
        'reserved_prefix': '__banish',
    },

    # Generated Code Header
    'generated_code_header': {
        'title': 'GENERATED CODE - DO NOT EDIT',
        'notice': 'Edit the machine source and regenerate instead.',
    },
}


def get_generated_header(source_name: str) -> str:
    """
    Get the comment header placed at the top of every generated module.
    """
    project = GENERATOR_CONFIG['project']
    header = GENERATOR_CONFIG['generated_code_header']

    return f"""# {header['title']}
#
# Generated by {project['name']} from: {source_name}
# {header['notice']}
"""


def get_output_filename(stem: str) -> str:
    """Get the generated module file name for a machine source stem"""
    return f"{stem}{GENERATOR_CONFIG['output']['suffix']}"


def get_entry_name(stem: str) -> str:
    """Turn a source file stem into a valid Python function name"""
    name = re.sub(r'\W', '_', stem)
    if not name or name[0].isdigit() or keyword.iskeyword(name):
        name = f"{GENERATOR_CONFIG['output']['default_entry']}_{name}"
    return name


def is_reserved_name(name: str) -> bool:
    return name.startswith(GENERATOR_CONFIG['engine']['reserved_prefix'])
