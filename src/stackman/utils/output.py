import json
from typing import Any, Dict

import yaml


def format_summary(summary: Dict[str, Any], as_json: bool = False) -> str:
    """
    Render a summary as indented json or as yaml (keys in insertion order).
    """
    if as_json:
        return json.dumps(summary, indent=2)
    return yaml.safe_dump(summary, sort_keys=False, default_flow_style=False).rstrip('\n')
