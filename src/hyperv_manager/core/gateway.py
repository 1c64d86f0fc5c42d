"""
Management service gateway interface.

Everything above this module talks to Hyper-V through two abstractions:
a ``Gateway`` that runs WQL queries, fetches and spawns documents and
invokes methods, and a ``Document`` with typed property access. The
concrete WMI implementation lives in ``connection.py``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

from common.exceptions import (
    MissingRequiredFieldError,
    TypeConversionError,
)

HYPERV_NAMESPACE = r"root\virtualization\v2"

PATH_PROPERTY = "__PATH"


class Document(ABC):
    """A WMI object: a fetched instance, a spawned instance or a parameter set."""

    @property
    @abstractmethod
    def class_name(self) -> str:
        """Schema class of the document."""
        pass

    @abstractmethod
    def get(self, name: str) -> Any:
        """Raw property value, or None when unset."""
        pass

    @abstractmethod
    def put(self, name: str, value: Any) -> None:
        """Set a property. Lists are stored as arrays."""
        pass

    @abstractmethod
    def get_text(self) -> str:
        """Embedded-instance text used when passing the document as a parameter."""
        pass

    @abstractmethod
    def _object_path(self) -> Optional[str]:
        pass

    @property
    def path(self) -> str:
        path = self._object_path()
        if not path:
            raise MissingRequiredFieldError(PATH_PROPERTY)
        return path

    @property
    def has_path(self) -> bool:
        return bool(self._object_path())

    def get_str(self, name: str) -> Optional[str]:
        value = self.get(name)
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeConversionError(name, "string")
        return value

    def require_str(self, name: str) -> str:
        value = self.get_str(name)
        if value is None:
            raise MissingRequiredFieldError(name)
        return value

    def get_int(self, name: str) -> Optional[int]:
        # uint64 values come back from WMI scripting as strings
        value = self.get(name)
        if value is None:
            return None
        if isinstance(value, bool):
            raise TypeConversionError(name, "integer")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                raise TypeConversionError(name, "integer") from None
        raise TypeConversionError(name, "integer")

    def require_int(self, name: str) -> int:
        value = self.get_int(name)
        if value is None:
            raise MissingRequiredFieldError(name)
        return value

    def get_bool(self, name: str) -> Optional[bool]:
        value = self.get(name)
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise TypeConversionError(name, "boolean")

    def get_str_list(self, name: str) -> List[str]:
        value = self.get(name)
        if value is None:
            return []
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return list(value)
        raise TypeConversionError(name, "string array")

    def get_int_list(self, name: str) -> List[int]:
        value = self.get(name)
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise TypeConversionError(name, "integer array")
        try:
            return [int(v) for v in value]
        except (TypeError, ValueError):
            raise TypeConversionError(name, "integer array") from None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.class_name} {self._object_path() or '(unsaved)'}>"


class Gateway(ABC):
    """Query, fetch, spawn and invoke against the virtualization namespace."""

    @abstractmethod
    def query(self, wql: str) -> List[Document]:
        """Run a WQL query and return every resulting document."""
        pass

    def query_first(self, wql: str) -> Optional[Document]:
        results = self.query(wql)
        return results[0] if results else None

    @abstractmethod
    def get_object(self, path: str) -> Document:
        """Fetch a single document by object path."""
        pass

    @abstractmethod
    def spawn_instance(self, class_name: str) -> Document:
        """Create a blank, unsaved instance of a schema class."""
        pass

    @abstractmethod
    def get_method_params(self, class_name: str, method: str) -> Document:
        """Blank input parameters for a method of a schema class."""
        pass

    @abstractmethod
    def exec_method(
        self,
        path: str,
        method: str,
        in_params: Optional[Document] = None,
    ) -> Document:
        """Invoke a method on the object at ``path`` and return its out parameters."""
        pass


# =============================================================================
# WQL helpers
# =============================================================================

def wql_quote(value: str) -> str:
    """Quote a string literal for a WQL predicate."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def select(class_name: str, *raw_conditions: str, **conditions: str) -> str:
    """
    Build a ``SELECT * FROM`` query.

    Keyword conditions are equality tests on string properties, joined
    with AND after any raw conditions.
    """
    clauses = list(raw_conditions)
    clauses.extend(f"{prop} = {wql_quote(value)}" for prop, value in conditions.items())
    wql = f"SELECT * FROM {class_name}"
    if clauses:
        wql += " WHERE " + " AND ".join(clauses)
    return wql


def associators(path: str, result_class: str, assoc_class: Optional[str] = None) -> str:
    """Build an ``ASSOCIATORS OF`` query from an object path."""
    wql = f"ASSOCIATORS OF {{{path}}} WHERE "
    if assoc_class:
        wql += f"AssocClass = {assoc_class} "
    return wql + f"ResultClass = {result_class}"


def path_key(path: str) -> str:
    """
    Comparable form of an object path.

    Drops the ``\\\\HOST\\namespace:`` prefix so absolute and relative
    paths of the same object compare equal.
    """
    if path.startswith("\\\\") and ":" in path:
        path = path.split(":", 1)[1]
    return path.lower()


def same_path(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return path_key(a) == path_key(b)


# =============================================================================
# Embedded instances
# =============================================================================

_INTEGER_TYPES = {
    "uint8", "uint16", "uint32", "uint64",
    "sint8", "sint16", "sint32", "sint64",
}


def _convert_value(text: Optional[str], cim_type: Optional[str]) -> Any:
    if text is None:
        return None
    if cim_type in _INTEGER_TYPES:
        return int(text)
    if cim_type == "boolean":
        return text.strip().lower() == "true"
    return text


def parse_instance_text(text: str) -> Tuple[str, Dict[str, Any]]:
    """
    Parse embedded-instance text (CIM DTD 2.0) into a class name and properties.

    Scalar properties map to a value or None, array properties to a list.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        raise TypeConversionError("embedded instance", "CIM-XML instance") from None

    instance = root if root.tag == "INSTANCE" else root.find(".//INSTANCE")
    if instance is None or "CLASSNAME" not in instance.attrib:
        raise TypeConversionError("embedded instance", "CIM-XML instance")

    properties: Dict[str, Any] = {}
    for prop in instance:
        name = prop.get("NAME")
        if name is None:
            continue
        cim_type = prop.get("TYPE")
        try:
            if prop.tag == "PROPERTY.ARRAY":
                values = prop.findall("./VALUE.ARRAY/VALUE")
                properties[name] = [_convert_value(v.text or "", cim_type) for v in values]
            elif prop.tag == "PROPERTY":
                value = prop.find("VALUE")
                properties[name] = None if value is None else _convert_value(value.text or "", cim_type)
        except ValueError:
            raise TypeConversionError(name, cim_type or "value") from None

    return instance.attrib["CLASSNAME"], properties
