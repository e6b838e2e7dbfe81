"""
Generated Code Header Configuration - Single Source of Truth

Everything written at the top of a generated module comes from here.
Modify the notice or license text in one place and regenerate.

Usage:
    from machine_factory.header_config import get_generated_code_header
    print(get_generated_code_header('traffic_light.xml'))
"""

HEADER_CONFIG = {
    # Tool Information
    'generator': {
        'name': 'machine-factory',
    },

    # Generated Code License Text (MIT, Unrestricted)
    'generated_code': {
        'spdx_license': 'MIT',
        'copyright_holder': '[Author of input specification]',
        'notice': 'Do not edit by hand: change the specification and regenerate.',
    },

    # Documented caller-visible hazards, repeated in event-driven modules
    'hazards': {
        'cancellation': (
            'handle_event() runs its lifecycle hooks as separate steps. If a hook '
            'raises or an asynchronous dispatch is cancelled between steps, the '
            'context keeps the changes already made and nothing is rolled back. '
            'The machine then reports interrupted_step and refuses events until '
            'recover() is called.'
        ),
    },
}


def get_generator_line(source=None):
    """Get formatted 'generated by' line"""
    name = HEADER_CONFIG['generator']['name']
    if source:
        return f"Generated by {name} from: {source}"
    return f"Generated by {name}"


def get_generated_code_header(source=None):
    """
    Get SPDX-compliant header for generated modules.

    Every line is a Python comment so the header can be placed
    above the module docstring.
    """
    generated = HEADER_CONFIG['generated_code']
    lines = [
        f"# SPDX-License-Identifier: {generated['spdx_license']}",
        f"# SPDX-FileCopyrightText: {generated['copyright_holder']}",
        "#",
        f"# {get_generator_line(source)}",
        f"# {generated['notice']}",
    ]
    return '\n'.join(lines) + '\n'


def get_hazard_text(name):
    """Get documented hazard text by name"""
    if name not in HEADER_CONFIG['hazards']:
        raise ValueError(f"Unknown hazard: {name}")
    return HEADER_CONFIG['hazards'][name]
