# service_catalog/json_io.py
import json
import logging
import re
from collections import OrderedDict
from typing import Any, Tuple

import commentjson
import yaml
from json_repair import repair_json

logger = logging.getLogger("catalog_editor")

COLOR_CODES = {
    'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
    'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
    'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
}


class JSONLoadError(ValueError):
    pass


def color_print(text, color=None) -> None:
    if color and color.lower() in COLOR_CODES:
        text = f"\033[{COLOR_CODES[color.lower()]}m{text}\033[0m"
    logger.info(str(text))


def clean_triple_backticks(text: str) -> str:
    return re.sub(r'```[a-zA-Z]*\n?|```\n?', '', text)


def _load(json_str: str, ensure_ordered: bool) -> Tuple[Any, str]:
    err = ""
    try:
        if ensure_ordered:
            data = commentjson.loads(clean_triple_backticks(json_str), object_pairs_hook=OrderedDict)
        else:
            data = commentjson.loads(clean_triple_backticks(json_str))
        if isinstance(data, (dict, list)):
            return data, ""
        err = "commentjson did not produce an object"
    except Exception as e:
        err = str(e)
    try:
        # strip // and /* */ comments before handing it to YAML
        stripped = re.sub(r'^\s*//.*?$|/\*.*?\*/', '', clean_triple_backticks(json_str), flags=re.MULTILINE | re.DOTALL)
        data = yaml.safe_load(stripped)
        if isinstance(data, (dict, list)):
            return data, ""
        err += "\n--\nYAML did not produce an object"
    except yaml.YAMLError as e:
        err += "\n--\n" + str(e)
    return None, err


def load_fault_tolerant_json(json_str: str, ensure_ordered: bool = False) -> Any:
    """
    commentjson first (comments allowed), then YAML, then json_repair on the
    raw text. Raises JSONLoadError when all of them give up.
    """
    data, err = _load(json_str, ensure_ordered)
    if data is not None:
        return data
    repaired = repair_json(json_str)
    r_data, r_err = _load(repaired, ensure_ordered)
    if r_data is not None:
        color_print("load_fault_tolerant_json: input needed repair", color="yellow")
        return r_data
    raise JSONLoadError(f"load_fault_tolerant_json: JSON parsing failed: {err}\n{r_err}")


def load_json_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return load_fault_tolerant_json(f.read())


def dump_json(data: Any) -> str:
    if hasattr(data, "to_wire"):
        data = data.to_wire()
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)
