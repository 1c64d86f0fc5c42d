"""
WMI connection management.

Implements the gateway over pywin32's COM bridge to WMI scripting
(``WbemScripting.SWbemLocator``). COM must be initialized on every thread
that touches the connection; ``ensure_initialized()`` does that once per
thread and every gateway method calls it.
"""

from __future__ import annotations

import functools
import logging
import threading
from typing import Any, Callable, List, Optional

from common.decorators import ensure_connected
from common.exceptions import (
    WmiConnectionError,
    WmiMethodError,
    WmiQueryError,
)
from .gateway import Document, Gateway, HYPERV_NAMESPACE

logger = logging.getLogger(__name__)

try:
    import pythoncom
    import pywintypes
    import win32com.client
    PYWIN32_AVAILABLE = True
except ImportError:
    PYWIN32_AVAILABLE = False
    logger.debug("pywin32 not available - WMI gateway disabled")

_COM_ERRORS = (pywintypes.com_error,) if PYWIN32_AVAILABLE else ()

# HRESULT / WBEM status codes
RPC_E_CHANGED_MODE = -2147417850
WBEM_E_NOT_FOUND = -2147217406

# SWbemObject.GetText_ format: CIM DTD 2.0
WBEM_OBJECT_TEXT_FORMAT_CIM_DTD20 = 1
WBEM_IMPERSONATION_LEVEL_IMPERSONATE = 3

# CIMType values whose integers must be passed as strings
_CIM_SINT64 = 20
_CIM_UINT64 = 21

_thread_state = threading.local()


def ensure_initialized() -> bool:
    """
    Initialize COM for the calling thread if it has not been already.

    Returns:
        True if this call performed the initialization
    """
    if getattr(_thread_state, "initialized", False):
        return False

    if not PYWIN32_AVAILABLE:
        raise WmiConnectionError(
            HYPERV_NAMESPACE,
            cause=RuntimeError("pywin32 is not installed. Install with: pip install pywin32"),
        )

    try:
        pythoncom.CoInitializeEx(pythoncom.COINIT_MULTITHREADED)
        _thread_state.owns_com = True
    except pywintypes.com_error as e:
        # Thread already runs an apartment of another kind; COM is usable
        if e.hresult != RPC_E_CHANGED_MODE:
            raise WmiConnectionError(HYPERV_NAMESPACE, cause=e) from e
        _thread_state.owns_com = False

    _thread_state.initialized = True
    logger.debug(f"COM initialized for thread {threading.current_thread().name}")
    return True


def release_thread() -> None:
    """Undo ensure_initialized() for the calling thread."""
    if not getattr(_thread_state, "initialized", False):
        return
    if getattr(_thread_state, "owns_com", False):
        pythoncom.CoUninitialize()
    _thread_state.initialized = False
    _thread_state.owns_com = False


def com_initialized(func: Callable) -> Callable:
    """Run ensure_initialized() before the wrapped call."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ensure_initialized()
        return func(*args, **kwargs)
    return wrapper


def _scode(error: Exception) -> Optional[int]:
    excepinfo = getattr(error, "excepinfo", None)
    if excepinfo and len(excepinfo) > 5:
        return excepinfo[5]
    return getattr(error, "hresult", None)


def _from_com(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_from_com(v) for v in value]
    return value


class WmiDocument(Document):
    """Document backed by an ``SWbemObject``."""

    def __init__(self, wmi_object: Any):
        self._obj = wmi_object

    @property
    def wmi_object(self) -> Any:
        return self._obj

    @property
    def class_name(self) -> str:
        return self._obj.SystemProperties_.Item("__CLASS").Value

    @com_initialized
    def get(self, name: str) -> Any:
        if name == "__PATH":
            return self._object_path()
        try:
            return _from_com(self._obj.Properties_.Item(name).Value)
        except _COM_ERRORS as e:
            if _scode(e) == WBEM_E_NOT_FOUND:
                return None
            raise WmiQueryError(f"{self.class_name}.{name}", cause=e) from e

    @com_initialized
    def put(self, name: str, value: Any) -> None:
        try:
            prop = self._obj.Properties_.Item(name)
            if prop.CIMType in (_CIM_SINT64, _CIM_UINT64):
                if isinstance(value, int) and not isinstance(value, bool):
                    value = str(value)
                elif isinstance(value, list):
                    value = [str(v) for v in value]
            prop.Value = value
        except _COM_ERRORS as e:
            raise WmiQueryError(f"{self.class_name}.{name} = {value!r}", cause=e) from e

    @com_initialized
    def get_text(self) -> str:
        return self._obj.GetText_(WBEM_OBJECT_TEXT_FORMAT_CIM_DTD20)

    def _object_path(self) -> Optional[str]:
        try:
            return self._obj.Path_.Path or None
        except _COM_ERRORS:
            # Spawned instances have no path yet
            return None


class WmiGateway(Gateway):
    """
    Gateway to the local or a remote Hyper-V host.

    One instance is meant to be shared by every handle created from it.
    """

    def __init__(self, namespace: str = HYPERV_NAMESPACE, host: str = "."):
        self.namespace = namespace
        self.host = host
        self._services = None
        self._lock = threading.RLock()

    @property
    def is_connected(self) -> bool:
        return self._services is not None

    @com_initialized
    def connect(self) -> None:
        """Connect to the WMI namespace."""
        with self._lock:
            if self._services is not None:
                return
            try:
                locator = win32com.client.Dispatch("WbemScripting.SWbemLocator")
                services = locator.ConnectServer(self.host, self.namespace)
                services.Security_.ImpersonationLevel = WBEM_IMPERSONATION_LEVEL_IMPERSONATE
            except _COM_ERRORS as e:
                raise WmiConnectionError(self.namespace, cause=e) from e
            self._services = services
            logger.info(f"Connected to WMI namespace {self.namespace} on {self.host}")

    def disconnect(self) -> None:
        with self._lock:
            if self._services is not None:
                self._services = None
                logger.info(f"Disconnected from WMI namespace {self.namespace}")

    def __enter__(self) -> "WmiGateway":
        self.connect()
        return self

    def __exit__(self, *args):
        self.disconnect()

    @com_initialized
    @ensure_connected("_services")
    def query(self, wql: str) -> List[Document]:
        logger.debug(f"WQL: {wql}")
        try:
            return [WmiDocument(obj) for obj in self._services.ExecQuery(wql)]
        except _COM_ERRORS as e:
            raise WmiQueryError(wql, cause=e) from e

    @com_initialized
    @ensure_connected("_services")
    def get_object(self, path: str) -> Document:
        try:
            return WmiDocument(self._services.Get(path))
        except _COM_ERRORS as e:
            raise WmiQueryError(path, cause=e) from e

    @com_initialized
    @ensure_connected("_services")
    def spawn_instance(self, class_name: str) -> Document:
        try:
            return WmiDocument(self._services.Get(class_name).SpawnInstance_())
        except _COM_ERRORS as e:
            raise WmiQueryError(class_name, cause=e) from e

    @com_initialized
    @ensure_connected("_services")
    def get_method_params(self, class_name: str, method: str) -> Document:
        try:
            wmi_class = self._services.Get(class_name)
            params = wmi_class.Methods_.Item(method).InParameters.SpawnInstance_()
        except _COM_ERRORS as e:
            raise WmiMethodError(class_name, method, cause=e) from e
        return WmiDocument(params)

    @com_initialized
    @ensure_connected("_services")
    def exec_method(
        self,
        path: str,
        method: str,
        in_params: Optional[Document] = None,
    ) -> Document:
        raw_params = in_params.wmi_object if isinstance(in_params, WmiDocument) else None
        logger.debug(f"Invoking {method} on {path}")
        try:
            return WmiDocument(self._services.ExecMethod(path, method, raw_params))
        except _COM_ERRORS as e:
            class_part = path.split(":", 1)[1] if path.startswith("\\\\") else path
            class_name = class_part.split(".", 1)[0]
            raise WmiMethodError(class_name, method, cause=e) from e
