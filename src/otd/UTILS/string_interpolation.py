"""
Utilities for substituting variables into manifest templates.
"""
import os
import re
from typing import Dict

MANIFEST_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "MANIFESTS")


class ManifestInterpolator:
    """
    Substitutes ${VAR} and ${VAR:-default} placeholders in manifest text.

    The text is never parsed as YAML. Placeholders that are not plain
    identifiers, such as the collector's own ${env:MY_POD_IP}, are left as
    they are.
    """
    # Group 1: VAR name, group 2: default after ":-"
    PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}')

    @classmethod
    def interpolate(cls, template: str, context: Dict[str, str]) -> str:
        """
        Interpolates variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: Variable values.
        :return: The interpolated string.
        :raises KeyError: If a variable is not found and no default is provided.
        """
        def replace(match):
            var_name = match.group(1)
            default = match.group(2)
            value = context.get(var_name)

            if default is not None:
                return value if value else default
            if value is None:
                raise KeyError(f"Variable {var_name} not found in context")
            return value

        return cls.PATTERN.sub(replace, template)

    @classmethod
    def render(cls, name: str, context: Dict[str, str]) -> str:
        """
        Loads a template shipped in the MANIFESTS directory and interpolates it.

        :param name: File name, e.g. "zipkin.yaml".
        :param context: Variable values.
        """
        with open(os.path.join(MANIFEST_DIR, name), 'r') as f:
            return cls.interpolate(f.read(), context)
