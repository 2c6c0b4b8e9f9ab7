# service_catalog/field_types.py
"""
Question (form field) type tables shared by validation and the store.

A question config is a plain dict as it travels on the wire, e.g.:

    {"id": "q1", "name": "pets", "label": "Pets?", "type": "dropdown",
     "isRequired": True, "options": [{"label": "Dog", "value": "dog"}]}
"""
from typing import Any, Dict

FIELD_TYPES = (
    "short-text",
    "long-text",
    "date",
    "file-upload",
    "dropdown",
    "multiple-choice",
    "yes-no",
    "required-checkbox",
    "contact-info",
    "address",
)

# radio / checkbox-list are not produced by the editor anymore but older
# forms still carry them
CHOICE_TYPES = ("dropdown", "multiple-choice", "radio", "checkbox-list")

# Types the general validator accepts without a warning
KNOWN_TYPES = set(FIELD_TYPES) | set(CHOICE_TYPES) | {"text", "textarea", "number"}

CONTACT_SUBFIELDS = ("firstName", "lastName", "email", "phone", "company")
ADDRESS_SUBFIELDS = ("street", "street2", "city", "state", "zip")

COMPOUND_SUBFIELDS = {
    "contact-info": CONTACT_SUBFIELDS,
    "address": ADDRESS_SUBFIELDS,
}

# subfield ids used by the booking page -> flag name inside fieldConfig
_CONTACT_FLAG_BY_SUBFIELD = {
    "first-name": "firstNameRequired",
    "last-name": "lastNameRequired",
    "email": "emailRequired",
    "phone": "phoneRequired",
    "company": "companyRequired",
}
_ADDRESS_FLAG_BY_SUBFIELD = {
    "street": "streetRequired",
    "street2": "street2Required",
    "city": "cityRequired",
    "state": "stateRequired",
    "zip": "zipRequired",
}


def is_choice_type(field_type: str) -> bool:
    return field_type in CHOICE_TYPES


def required_subfields(config: Dict[str, Any]) -> list:
    """
    Names of the required sub-fields of a contact-info / address question.

    Both spellings seen in stored forms are understood: the list form
    (fieldConfig.requiredFields) and the flag form (fieldConfig.emailRequired...).
    """
    field_type = config.get("type")
    if field_type not in COMPOUND_SUBFIELDS:
        return []
    field_config = config.get("fieldConfig") or {}
    listed = field_config.get("requiredFields")
    if isinstance(listed, list):
        return [str(f) for f in listed]
    return [
        sub for sub in COMPOUND_SUBFIELDS[field_type]
        if field_config.get(f"{sub}Required")
    ]


def is_field_required(config: Dict[str, Any]) -> bool:
    if "isRequired" in config:
        return bool(config["isRequired"])
    field_type = config.get("type")
    if field_type == "contact-info":
        return any(s in required_subfields(config) for s in ("firstName", "lastName", "email", "phone"))
    if field_type == "address":
        return any(s in required_subfields(config) for s in ("street", "city", "state", "zip"))
    return False


def is_subfield_required(config: Dict[str, Any], subfield_id: str) -> bool:
    field_config = config.get("fieldConfig") or {}
    if config.get("type") == "contact-info":
        flag = _CONTACT_FLAG_BY_SUBFIELD.get(subfield_id)
    elif config.get("type") == "address":
        flag = _ADDRESS_FLAG_BY_SUBFIELD.get(subfield_id)
    else:
        return False
    if flag is None:
        return False
    if isinstance(field_config.get("requiredFields"), list):
        return flag[: -len("Required")] in field_config["requiredFields"]
    return bool(field_config.get(flag))
