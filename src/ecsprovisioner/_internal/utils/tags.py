from typing import Dict, Optional

# ECS tag constraints: keys are 1-128 characters, values are 0-128 characters,
# and neither may start with the reserved prefixes or contain URL schemes.
TAG_KEY_MAX_LENGTH = 128
TAG_VALUE_MAX_LENGTH = 128
RESERVED_TAG_PREFIXES = ("aliyun", "acs:")
FORBIDDEN_TAG_SUBSTRINGS = ("http://", "https://")


def tags_validator(tags: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    if tags is None:
        return
    validate_tags(tags)
    return tags


def validate_tags(tags: Dict[str, str]):
    for k, v in tags.items():
        _validate_tag(k, v)


def _validate_tag(key: str, value: str):
    if not is_valid_tag_key(key):
        raise ValueError(
            f"Invalid tag key {key}. The key must be 1-{TAG_KEY_MAX_LENGTH} characters long,"
            f" must not start with {', '.join(RESERVED_TAG_PREFIXES)}"
            f" and must not contain {', '.join(FORBIDDEN_TAG_SUBSTRINGS)}"
        )
    if not is_valid_tag_value(value):
        raise ValueError(
            f"Invalid tag value {value}. The value must be at most {TAG_VALUE_MAX_LENGTH}"
            f" characters long and must not contain {', '.join(FORBIDDEN_TAG_SUBSTRINGS)}"
        )


def is_valid_tag_key(name: str) -> bool:
    if not 1 <= len(name) <= TAG_KEY_MAX_LENGTH:
        return False
    if name.lower().startswith(RESERVED_TAG_PREFIXES):
        return False
    return not any(s in name for s in FORBIDDEN_TAG_SUBSTRINGS)


def is_valid_tag_value(value: str) -> bool:
    if len(value) > TAG_VALUE_MAX_LENGTH:
        return False
    if value.lower().startswith(RESERVED_TAG_PREFIXES):
        return False
    return not any(s in value for s in FORBIDDEN_TAG_SUBSTRINGS)
