"""
In-memory Hyper-V used by the tests.

FakeGateway implements the Gateway interface over a dict of documents.
It evaluates the WQL the managers issue (SELECT with AND-ed equality
predicates, ASSOCIATORS OF with a ResultClass) and carries out the
management-service methods on its own state, so tests observe the same
request/response exchange the WMI gateway would see.

Association model: every document may have an owner. A VM owns its
settings, the settings own resources (controllers, drives, media,
adapters, connections), a connection owns its port features and switch
settings own their host ports. ``ASSOCIATORS OF {x}`` returns the
documents x owns plus x's owner.
"""

from __future__ import annotations

import itertools
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

from common.exceptions import WmiMethodError, WmiQueryError
from hyperv_manager.core.gateway import Document, Gateway, parse_instance_text, path_key

HOST = "FAKEHOST"
NAMESPACE_PREFIX = f"\\\\{HOST}\\root\\virtualization\\v2:"

VSMS = "Msvm_VirtualSystemManagementService"
IMAGE_SERVICE = "Msvm_ImageManagementService"
SWITCH_SERVICE = "Msvm_VirtualEthernetSwitchManagementService"
COMPUTER_SYSTEM = "Msvm_ComputerSystem"
SYSTEM_SETTINGS = "Msvm_VirtualSystemSettingData"
RASD = "Msvm_ResourceAllocationSettingData"
JOB = "Msvm_ConcreteJob"

REALIZED_TYPE = "Microsoft:Hyper-V:System:Realized"
SNAPSHOT_TYPE = "Microsoft:Hyper-V:Snapshot:Realized"
IDE_SUBTYPE = "Microsoft:Hyper-V:Emulated IDE Controller"

STATE_RUNNING = 2
STATE_OFF = 3
STATE_PAUSED = 32768
STATE_SAVED = 32769

JOB_RUNNING = 4
JOB_COMPLETED = 7
JOB_EXCEPTION = 10

# RequestedState -> resulting EnabledState
_REQUESTED_TO_ENABLED = {
    2: STATE_RUNNING,
    3: STATE_OFF,
    11: STATE_RUNNING,
    32768: STATE_PAUSED,
    32769: STATE_SAVED,
}


def make_path(class_name: str, key: str, value: str) -> str:
    return f'{NAMESPACE_PREFIX}{class_name}.{key}="{value}"'


# =============================================================================
# Documents
# =============================================================================

def _cim_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "sint64"
    return "string"


def _cim_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_instance(class_name: str, properties: Dict[str, Any]) -> str:
    """Render properties as CIM DTD 2.0 instance text, like SWbemObject.GetText_(1)."""
    instance = ET.Element("INSTANCE", CLASSNAME=class_name)
    for name, value in properties.items():
        if isinstance(value, (list, tuple)):
            prop = ET.SubElement(
                instance, "PROPERTY.ARRAY", NAME=name,
                TYPE=_cim_type(value[0]) if value else "string",
            )
            array = ET.SubElement(prop, "VALUE.ARRAY")
            for item in value:
                ET.SubElement(array, "VALUE").text = _cim_text(item)
        else:
            prop = ET.SubElement(instance, "PROPERTY", NAME=name, TYPE=_cim_type(value))
            if value is not None:
                ET.SubElement(prop, "VALUE").text = _cim_text(value)
    return ET.tostring(instance, encoding="unicode")


class FakeDocument(Document):
    def __init__(
        self,
        class_name: str,
        properties: Optional[Dict[str, Any]] = None,
        path: Optional[str] = None,
    ):
        self._class_name = class_name
        self.properties: Dict[str, Any] = dict(properties or {})
        self._path = path

    @property
    def class_name(self) -> str:
        return self._class_name

    def get(self, name: str) -> Any:
        value = self.properties.get(name)
        return list(value) if isinstance(value, list) else value

    def put(self, name: str, value: Any) -> None:
        self.properties[name] = list(value) if isinstance(value, (list, tuple)) else value

    def get_text(self) -> str:
        return render_instance(self._class_name, self.properties)

    def _object_path(self) -> Optional[str]:
        return self._path

    def copy(self) -> "FakeDocument":
        return FakeDocument(self._class_name, self.properties, self._path)


# =============================================================================
# Scripting
# =============================================================================

@dataclass
class Failure:
    """
    A scripted failure for the next matching method call.

    Either ``return_value`` (the method returns that code) or ``job_state``
    (the method starts a job that ends in that state) is set.
    """
    method: str
    return_value: Optional[int] = None
    job_state: Optional[int] = None
    error_code: int = 32768
    description: Optional[str] = "Injected failure"
    when: Optional[Callable[[Dict[str, Any]], bool]] = None


@dataclass
class Call:
    method: str
    target_class: str
    params: Dict[str, Any] = field(default_factory=dict)

    def embedded(self, name: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Parse an embedded-instance parameter (or list of them)."""
        value = self.params.get(name)
        if value is None:
            return []
        texts = value if isinstance(value, list) else [value]
        return [parse_instance_text(t) for t in texts]


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


_SELECT_RE = re.compile(r"^SELECT \* FROM (\w+)(?: WHERE (.*))?$", re.S)
_CONDITION_RE = re.compile(r"(\w+) = '((?:\\.|[^'\\])*)'")
_ASSOCIATORS_RE = re.compile(
    r"^ASSOCIATORS OF \{(.*)\} WHERE (?:AssocClass = (\w+) )?ResultClass = (\w+)$", re.S
)


# =============================================================================
# Gateway
# =============================================================================

class FakeGateway(Gateway):
    """
    Simulated Hyper-V host.

    Args:
        async_jobs: Methods return 4096 with a job instead of completing inline
        job_polls: Polls a job reports Running before it completes
        hang_jobs: Jobs never complete
        omit_resulting_settings: AddResourceSettings leaves out ResultingResourceSettings
    """

    def __init__(
        self,
        async_jobs: bool = False,
        job_polls: int = 1,
        hang_jobs: bool = False,
        omit_resulting_settings: bool = False,
    ):
        self.async_jobs = async_jobs
        self.job_polls = job_polls
        self.hang_jobs = hang_jobs
        self.omit_resulting_settings = omit_resulting_settings
        self.guest_ignores_shutdown = False

        self.documents: Dict[str, FakeDocument] = {}
        self.owners: Dict[str, str] = {}
        self.vhds: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Call] = []
        self.failures: List[Failure] = []

        self._ids = itertools.count(1)
        self._job_polls_left: Dict[str, Optional[int]] = {}
        self._job_final_state: Dict[str, int] = {}
        self._job_errors: Dict[str, Tuple[int, Optional[str]]] = {}
        self._captured_state: Dict[str, int] = {}
        self._current_snapshot: Dict[str, str] = {}

        self.host = self.add_document(
            COMPUTER_SYSTEM, "Name", HOST,
            {"ElementName": HOST, "Caption": "Hosting Computer System"},
        )
        for service in (VSMS, IMAGE_SERVICE, SWITCH_SERVICE):
            self.add_document(service, "Name", service, {"ElementName": service})

        self._handlers = {
            (VSMS, "DefineSystem"): self._define_system,
            (VSMS, "DestroySystem"): self._destroy_system,
            (VSMS, "ModifyResourceSettings"): self._modify_resource_settings,
            (VSMS, "ModifySecuritySettings"): self._modify_security_settings,
            (VSMS, "ModifySystemSettings"): self._modify_system_settings,
            (VSMS, "AddResourceSettings"): self._add_resource_settings,
            (VSMS, "AddFeatureSettings"): self._add_feature_settings,
            (VSMS, "CreateSnapshot"): self._create_snapshot,
            (VSMS, "ApplySnapshot"): self._apply_snapshot,
            (VSMS, "DestroySnapshot"): self._destroy_snapshot,
            (COMPUTER_SYSTEM, "RequestStateChange"): self._request_state_change,
            ("Msvm_ShutdownComponent", "InitiateShutdown"): self._initiate_shutdown,
            (IMAGE_SERVICE, "CreateVirtualHardDisk"): self._create_vhd,
            (IMAGE_SERVICE, "GetVirtualHardDiskSettingData"): self._get_vhd_settings,
            (IMAGE_SERVICE, "ResizeVirtualHardDisk"): self._resize_vhd,
            (IMAGE_SERVICE, "ConvertVirtualHardDisk"): self._convert_vhd,
            (IMAGE_SERVICE, "CompactVirtualHardDisk"): self._compact_vhd,
            (IMAGE_SERVICE, "MergeVirtualHardDisk"): self._merge_vhd,
            (SWITCH_SERVICE, "DefineSystem"): self._define_switch,
            (SWITCH_SERVICE, "DestroySystem"): self._destroy_switch,
            (SWITCH_SERVICE, "ModifySystemSettings"): self._modify_system_settings,
        }

    # --- store ------------------------------------------------------------

    def _next_id(self) -> int:
        return next(self._ids)

    def add_document(
        self,
        class_name: str,
        key: str,
        key_value: str,
        properties: Optional[Dict[str, Any]] = None,
        owner: Optional[str] = None,
    ) -> FakeDocument:
        properties = dict(properties or {})
        properties.setdefault(key, key_value)
        document = FakeDocument(class_name, properties, make_path(class_name, key, key_value))
        self.documents[path_key(document.path)] = document
        if owner is not None:
            self.owners[path_key(document.path)] = path_key(owner)
        return document

    def stored(self, path: str) -> FakeDocument:
        """The stored (not copied) document at ``path``."""
        try:
            return self.documents[path_key(path)]
        except KeyError:
            raise WmiQueryError(path) from None

    def remove(self, path: str) -> None:
        """Remove a document and everything it owns."""
        key = path_key(path)
        for child in [k for k, owner in self.owners.items() if owner == key]:
            self.remove(self.documents[child].path)
        self.documents.pop(key, None)
        self.owners.pop(key, None)

    def of_class(self, class_name: str) -> List[FakeDocument]:
        return [d for d in self.documents.values() if d.class_name == class_name]

    def owned_by(self, path: str, class_name: Optional[str] = None) -> List[FakeDocument]:
        key = path_key(path)
        return [
            self.documents[k] for k, owner in self.owners.items()
            if owner == key and (class_name is None or self.documents[k].class_name == class_name)
        ]

    def _by_instance_id(self, class_name: str, instance_id: Optional[str]) -> FakeDocument:
        for document in self.of_class(class_name):
            if document.properties.get("InstanceID") == instance_id:
                return document
        raise WmiQueryError(f"{class_name}.InstanceID={instance_id}")

    # --- seeding ------------------------------------------------------------

    def add_vm(
        self,
        name: str,
        generation: int = 2,
        state: int = STATE_OFF,
        shutdown_component: bool = True,
        **settings: Any,
    ) -> FakeDocument:
        """Create a VM directly, as if it had been defined earlier."""
        properties = {
            "ElementName": name,
            "VirtualSystemSubType": f"Microsoft:Hyper-V:SubType:{generation}",
        }
        properties.update(settings)
        vm = self._new_vm(properties, shutdown_component)
        vm.properties["EnabledState"] = state
        return vm

    def add_physical_adapter(self, device_id: str, name: str, **properties: Any) -> FakeDocument:
        props = {"ElementName": name, "PermanentAddress": "00155D000001", "OperationalStatus": [2]}
        props.update(properties)
        return self.add_document("Msvm_ExternalEthernetPort", "DeviceID", device_id, props)

    def add_vhd_file(self, path: str, size_bytes: int, disk_type: int = 3, parent: Optional[str] = None) -> None:
        self.vhds[path.lower()] = {
            "Path": path,
            "Type": disk_type,
            "Format": 2 if path.lower().endswith(".vhd") else 3,
            "MaxInternalSize": size_bytes,
            "BlockSize": 33554432,
            "LogicalSectorSize": 512,
            "PhysicalSectorSize": 4096,
            "ParentPath": parent or "",
        }

    def vm_document(self, name: str) -> FakeDocument:
        for document in self.of_class(COMPUTER_SYSTEM):
            if document.properties.get("ElementName") == name and document.properties.get("Caption") == "Virtual Machine":
                return document
        raise KeyError(name)

    def vm_settings(self, vm: FakeDocument) -> FakeDocument:
        return self.owned_by(vm.path, SYSTEM_SETTINGS)[0]

    def set_state(self, name: str, state: int) -> None:
        self.vm_document(name).properties["EnabledState"] = state

    # --- scripting ------------------------------------------------------------

    def fail_next(self, method: str, **kwargs: Any) -> Failure:
        failure = Failure(method, **kwargs)
        self.failures.append(failure)
        return failure

    def calls_to(self, method: str) -> List[Call]:
        return [c for c in self.calls if c.method == method]

    # --- Gateway ------------------------------------------------------------

    def query(self, wql: str) -> List[Document]:
        match = _SELECT_RE.match(wql)
        if match:
            class_name, where = match.groups()
            conditions = [(p, _unescape(v)) for p, v in _CONDITION_RE.findall(where or "")]
            return [
                d.copy() for d in self.of_class(class_name)
                if all(d.properties.get(p) == v for p, v in conditions)
            ]

        match = _ASSOCIATORS_RE.match(wql)
        if match:
            path, _, result_class = match.groups()
            key = path_key(path)
            results = self.owned_by(path, result_class)
            owner = self.owners.get(key)
            if owner is not None and self.documents[owner].class_name == result_class:
                results.append(self.documents[owner])
            return [d.copy() for d in results]

        raise WmiQueryError(wql)

    def get_object(self, path: str) -> Document:
        key = path_key(path)
        if key in self._job_polls_left:
            self._advance_job(key)
        return self.stored(path).copy()

    def spawn_instance(self, class_name: str) -> Document:
        return FakeDocument(class_name)

    def get_method_params(self, class_name: str, method: str) -> Document:
        return FakeDocument("__PARAMETERS")

    def exec_method(self, path: str, method: str, in_params: Optional[Document] = None) -> Document:
        target = self.stored(path)
        params = dict(in_params.properties) if isinstance(in_params, FakeDocument) else {}
        self.calls.append(Call(method, target.class_name, params))

        handler = self._handlers.get((target.class_name, method))
        if handler is None:
            raise WmiMethodError(target.class_name, method, cause=NotImplementedError(method))

        failure = self._take_failure(method, params)
        if failure is not None:
            if failure.return_value is not None:
                return FakeDocument("__PARAMETERS", {"ReturnValue": failure.return_value})
            job = self._new_job(failure.job_state, failure.error_code, failure.description)
            return FakeDocument("__PARAMETERS", {"ReturnValue": 4096, "Job": job})

        out = handler(target, params) or {}
        if self.async_jobs:
            out["Job"] = self._new_job(JOB_COMPLETED)
            out["ReturnValue"] = 4096
        else:
            out["ReturnValue"] = 0
        return FakeDocument("__PARAMETERS", out)

    def _take_failure(self, method: str, params: Dict[str, Any]) -> Optional[Failure]:
        for failure in self.failures:
            if failure.method == method and (failure.when is None or failure.when(params)):
                self.failures.remove(failure)
                return failure
        return None

    # --- jobs ---------------------------------------------------------------

    def _new_job(self, final_state: int, error_code: int = 0, description: Optional[str] = None) -> str:
        job = self.add_document(JOB, "InstanceID", f"job-{self._next_id()}", {
            "JobState": JOB_RUNNING,
            "PercentComplete": 0,
            "ErrorCode": 0,
            "ErrorDescription": None,
        })
        key = path_key(job.path)
        self._job_polls_left[key] = None if self.hang_jobs else self.job_polls
        self._job_final_state[key] = final_state
        self._job_errors[key] = (error_code, description)
        return job.path

    def _advance_job(self, key: str) -> None:
        job = self.documents[key]
        left = self._job_polls_left[key]
        if left is None:
            return
        if left > 0:
            self._job_polls_left[key] = left - 1
            job.properties["PercentComplete"] = 50
            return
        state = self._job_final_state[key]
        job.properties["JobState"] = state
        job.properties["PercentComplete"] = 100
        if state != JOB_COMPLETED:
            error_code, description = self._job_errors[key]
            job.properties["ErrorCode"] = error_code
            job.properties["ErrorDescription"] = description

    # --- virtual system management ------------------------------------------

    def _new_vm(self, settings: Dict[str, Any], shutdown_component: bool = True) -> FakeDocument:
        vm_id = str(uuid.uuid4()).upper()
        vm = self.add_document(COMPUTER_SYSTEM, "Name", vm_id, {
            "ElementName": settings.get("ElementName"),
            "Caption": "Virtual Machine",
            "EnabledState": STATE_OFF,
        })

        settings = dict(settings)
        settings.update({
            "VirtualSystemIdentifier": vm_id,
            "VirtualSystemType": REALIZED_TYPE,
        })
        system = self.add_document(SYSTEM_SETTINGS, "InstanceID", f"Microsoft:{vm_id}", settings, owner=vm.path)

        self.add_document("Msvm_MemorySettingData", "InstanceID", f"Microsoft:{vm_id}:memory",
                          {"VirtualQuantity": 1024, "Reservation": 1024, "Limit": 1024,
                           "DynamicMemoryEnabled": False}, owner=system.path)
        self.add_document("Msvm_ProcessorSettingData", "InstanceID", f"Microsoft:{vm_id}:processor",
                          {"VirtualQuantity": 1}, owner=system.path)
        self.add_document("Msvm_SecuritySettingData", "InstanceID", f"Microsoft:{vm_id}:security",
                          {"TpmEnabled": False}, owner=system.path)

        if ":1" in (settings.get("VirtualSystemSubType") or ""):
            for number in (0, 1):
                self.add_document(RASD, "InstanceID", f"Microsoft:{vm_id}:ide{number}", {
                    "ResourceType": 5,
                    "ResourceSubType": IDE_SUBTYPE,
                    "Address": str(number),
                }, owner=system.path)

        if shutdown_component:
            self.add_document("Msvm_ShutdownComponent", "DeviceID", f"{vm_id}:shutdown", {
                "SystemName": vm_id,
            }, owner=vm.path)
        return vm

    def _define_system(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        _, settings = parse_instance_text(params["SystemSettings"])
        vm = self._new_vm(settings)
        return {"ResultingSystem": vm.path}

    def _destroy_system(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        vm = self.stored(params["AffectedSystem"])
        vm_id = vm.properties["Name"]
        for snapshot in self._snapshots(vm_id):
            self.remove(snapshot.path)
        self.remove(vm.path)
        return {}

    def _modify(self, texts: List[str]) -> List[str]:
        paths = []
        for text in texts:
            class_name, properties = parse_instance_text(text)
            document = self._by_instance_id(class_name, properties.get("InstanceID"))
            document.properties.update(properties)
            paths.append(document.path)
        return paths

    def _modify_resource_settings(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"ResultingResourceSettings": self._modify(params["ResourceSettings"])}

    def _modify_security_settings(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        self._modify([params["SecuritySettingData"]])
        return {}

    def _modify_system_settings(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        self._modify([params["SystemSettings"]])
        return {}

    def _add_owned(self, owner: str, texts: List[str]) -> List[str]:
        self.stored(owner)
        paths = []
        for text in texts:
            class_name, properties = parse_instance_text(text)
            parent = properties.get("Parent")
            if parent:
                self.stored(parent)
            instance_id = f"Microsoft:resource-{self._next_id()}"
            properties["InstanceID"] = instance_id
            document = self.add_document(class_name, "InstanceID", instance_id, properties, owner=owner)
            paths.append(document.path)
        return paths

    def _add_resource_settings(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        paths = self._add_owned(params["AffectedConfiguration"], params["ResourceSettings"])
        if self.omit_resulting_settings:
            return {}
        return {"ResultingResourceSettings": paths}

    def _add_feature_settings(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        paths = self._add_owned(params["AffectedConfiguration"], params["FeatureSettings"])
        return {"ResultingFeatureSettings": paths}

    # --- power ----------------------------------------------------------------

    def _request_state_change(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        target.properties["EnabledState"] = _REQUESTED_TO_ENABLED[params["RequestedState"]]
        return {}

    def _initiate_shutdown(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.guest_ignores_shutdown:
            vm = self.stored(make_path(COMPUTER_SYSTEM, "Name", target.properties["SystemName"]))
            vm.properties["EnabledState"] = STATE_OFF
        return {}

    # --- snapshots --------------------------------------------------------------

    def _snapshots(self, vm_id: str) -> List[FakeDocument]:
        return [
            d for d in self.of_class(SYSTEM_SETTINGS)
            if d.properties.get("VirtualSystemType") == SNAPSHOT_TYPE
            and d.properties.get("VirtualSystemIdentifier") == vm_id
        ]

    def _create_snapshot(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        vm = self.stored(params["AffectedSystem"])
        vm_id = vm.properties["Name"]
        _, settings = parse_instance_text(params["SnapshotSettings"])

        number = self._next_id()
        snapshot = self.add_document(SYSTEM_SETTINGS, "InstanceID", f"Microsoft:snapshot-{number}", {
            "ElementName": settings.get("ElementName"),
            "Notes": settings.get("Notes"),
            "ConsistencyLevel": settings.get("ConsistencyLevel"),
            "SnapshotType": params.get("SnapshotType"),
            "VirtualSystemIdentifier": vm_id,
            "VirtualSystemType": SNAPSHOT_TYPE,
            "Parent": self._current_snapshot.get(vm_id),
            "CreationTime": f"2026101912{number % 60:02d}00.000000-000",
        })
        self._captured_state[path_key(snapshot.path)] = vm.properties["EnabledState"]
        self._current_snapshot[vm_id] = snapshot.path
        return {"ResultingSnapshot": snapshot.path}

    def _apply_snapshot(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        snapshot = self.stored(params["Snapshot"])
        vm_id = snapshot.properties["VirtualSystemIdentifier"]
        vm = self.stored(make_path(COMPUTER_SYSTEM, "Name", vm_id))
        captured = self._captured_state[path_key(snapshot.path)]
        # A checkpoint of a running VM restores into the saved state
        vm.properties["EnabledState"] = STATE_SAVED if captured in (STATE_RUNNING, STATE_PAUSED) else STATE_OFF
        self._current_snapshot[vm_id] = snapshot.path
        return {}

    def _destroy_snapshot(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        snapshot = self.stored(params["AffectedSnapshot"])
        vm_id = snapshot.properties["VirtualSystemIdentifier"]
        parent = snapshot.properties.get("Parent")
        for child in self._snapshots(vm_id):
            if child.properties.get("Parent") == snapshot.path:
                child.properties["Parent"] = parent
        if self._current_snapshot.get(vm_id) == snapshot.path:
            self._current_snapshot[vm_id] = parent
        self.remove(snapshot.path)
        return {}

    # --- image management --------------------------------------------------------

    def _create_vhd(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        _, settings = parse_instance_text(params["VirtualDiskSettingData"])
        if settings.get("ParentPath"):
            parent = self.vhds[settings["ParentPath"].lower()]
            settings["MaxInternalSize"] = parent["MaxInternalSize"]
        settings.setdefault("BlockSize", 33554432)
        settings.setdefault("LogicalSectorSize", 512)
        settings.setdefault("PhysicalSectorSize", 4096)
        self.vhds[settings["Path"].lower()] = settings
        return {}

    def _get_vhd_settings(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        settings = self.vhds.get(params["Path"].lower())
        if settings is None:
            return {"SettingData": None}
        return {"SettingData": render_instance("Msvm_VirtualHardDiskSettingData", settings)}

    def _resize_vhd(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        self.vhds[params["Path"].lower()]["MaxInternalSize"] = params["MaxInternalSize"]
        return {}

    def _convert_vhd(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        source = self.vhds[params["SourcePath"].lower()]
        _, settings = parse_instance_text(params["VirtualDiskSettingData"])
        converted = dict(source)
        converted.update(Path=settings["Path"], Type=settings["Type"], Format=settings["Format"])
        self.vhds[settings["Path"].lower()] = converted
        return {}

    def _vhd(self, path: str) -> Dict[str, Any]:
        try:
            return self.vhds[path.lower()]
        except KeyError:
            raise WmiMethodError(IMAGE_SERVICE, "VirtualHardDisk", cause=FileNotFoundError(path)) from None

    def _compact_vhd(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        self._vhd(params["Path"])
        return {}

    def _merge_vhd(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        self._vhd(params["DestinationPath"])
        del self.vhds[params["SourcePath"].lower()]
        return {}

    # --- switches -------------------------------------------------------------------

    def _define_switch(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        _, settings = parse_instance_text(params["SystemSettings"])
        switch_id = str(uuid.uuid4())
        switch = self.add_document("Msvm_VirtualEthernetSwitch", "Name", switch_id, {
            "ElementName": settings.get("ElementName"),
        })
        settings.update({"VirtualSystemIdentifier": switch_id})
        system = self.add_document(
            "Msvm_VirtualEthernetSwitchSettingData", "InstanceID", f"Microsoft:{switch_id}",
            settings, owner=switch.path,
        )
        for text in params.get("ResourceSettings") or []:
            class_name, port = parse_instance_text(text)
            for resource in port.get("HostResource") or []:
                self.stored(resource)
            instance_id = f"Microsoft:{switch_id}:port-{self._next_id()}"
            port["InstanceID"] = instance_id
            self.add_document(class_name, "InstanceID", instance_id, port, owner=system.path)
        return {"ResultingSystem": switch.path}

    def _destroy_switch(self, target: FakeDocument, params: Dict[str, Any]) -> Dict[str, Any]:
        self.remove(params["AffectedSystem"])
        return {}
