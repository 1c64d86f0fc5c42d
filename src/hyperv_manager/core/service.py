"""
Management service access shared by the VM, storage, network and
checkpoint managers.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from common.exceptions import WmiQueryError
from .gateway import Document, Gateway, select
from .jobs import JobMonitor

logger = logging.getLogger(__name__)

VIRTUAL_SYSTEM_MANAGEMENT_SERVICE = "Msvm_VirtualSystemManagementService"
IMAGE_MANAGEMENT_SERVICE = "Msvm_ImageManagementService"
SWITCH_MANAGEMENT_SERVICE = "Msvm_VirtualEthernetSwitchManagementService"


def _as_param(value: Any) -> Any:
    if isinstance(value, Document):
        return value.get_text()
    if isinstance(value, (list, tuple)):
        return [_as_param(v) for v in value]
    return value


class ServiceClient:
    """
    Invokes methods on a management service and waits for their jobs.

    Subclasses pick the service through ``service_class``.
    """

    service_class = VIRTUAL_SYSTEM_MANAGEMENT_SERVICE

    def __init__(self, gateway: Gateway, jobs: JobMonitor):
        self._gateway = gateway
        self._jobs = jobs
        self._service_path_cache: Optional[str] = None

    @property
    def gateway(self) -> Gateway:
        return self._gateway

    @property
    def jobs(self) -> JobMonitor:
        return self._jobs

    def _service_path(self) -> str:
        if self._service_path_cache is None:
            wql = select(self.service_class)
            service = self._gateway.query_first(wql)
            if service is None:
                raise WmiQueryError(wql)
            self._service_path_cache = service.path
        return self._service_path_cache

    def invoke(
        self,
        method: str,
        operation: Optional[str] = None,
        target_path: Optional[str] = None,
        class_name: Optional[str] = None,
        **params: Any,
    ) -> Document:
        """
        Call ``method`` and wait for it to finish.

        Parameters that are None are left unset. Documents (and lists of
        them) are passed as embedded-instance text.

        Args:
            method: WMI method name
            operation: Name reported in errors (defaults to the method)
            target_path: Object to invoke on (defaults to the service)
            class_name: Class declaring the method (defaults to the service class)

        Returns:
            The method's out parameters
        """
        class_name = class_name or self.service_class
        path = target_path or self._service_path()

        in_params = self._gateway.get_method_params(class_name, method)
        for name, value in params.items():
            if value is not None:
                in_params.put(name, _as_param(value))

        out_params = self._gateway.exec_method(path, method, in_params)
        return self._jobs.handle_result(out_params, operation or method)

    def resolve(self, out_params: Document, reference: str) -> Document:
        """Fetch the object an out parameter such as ``ResultingSystem`` points at."""
        return self._gateway.get_object(out_params.require_str(reference))
