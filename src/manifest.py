"""Manifest loading and validation for application installs.

A manifest lists the components of an application in the order the author
declared them. Each component names at most one predecessor via 'needs',
forming a forest that the installer walks forwards (install) or backwards
(uninstall).

Cycles are detected by the plan builder. The loader only rejects
structural problems (missing fields, unknown types, duplicate ids,
dangling needs).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml

from config import ConfigError

logger = logging.getLogger(__name__)

# Manifest keys for the four check phases
CHECK_PHASE_KEYS = {
    'pre_deploy': 'preDeploy',
    'pre_delete': 'preDelete',
    'pre_upgrade': 'preUpgrade',
    'wait_complete': 'waitComplete',
}


class ManifestError(ConfigError):
    """Manifest is unparsable or malformed."""


class ComponentType(str, Enum):
    NAMESPACE = 'namespace'
    HELM = 'helm'
    YAML = 'yaml'


class CheckType(str, Enum):
    POD = 'pod'
    LOADBALANCER = 'loadbalancer'
    CRD = 'crd'
    JOB = 'job'


class ValueType(str, Enum):
    LABEL = 'label'
    ANNOTATION = 'annotation'
    SET = 'set'


@dataclass(frozen=True)
class Value:
    """A named value attached to a component.

    Labels and annotations decorate namespaces; 'set' values are passed
    to helm as --set name=value.
    """
    name: str
    value: str
    type: ValueType = ValueType.SET

    @classmethod
    def from_dict(cls, data: dict) -> 'Value':
        if not isinstance(data, dict):
            raise ManifestError(f"Value must be a mapping ({data!r})")
        if 'name' not in data:
            raise ManifestError(f"Value missing required field: name ({data})")
        raw_type = str(data.get('type') or ValueType.SET.value).lower()
        try:
            value_type = ValueType(raw_type)
        except ValueError:
            raise ManifestError(
                f"Unknown value type '{raw_type}' for value '{data.get('name')}'"
            )
        return cls(name=str(data['name']), value=str(data.get('value', '')), type=value_type)


@dataclass(frozen=True)
class ComponentAction:
    """A readiness condition gating a component phase.

    The raw type string from the manifest is kept so that unrecognized
    types can be tolerated or rejected at run time (see strict_checks).

    Attributes:
        type: Check type as written in the manifest
        selector: Label selector (pod) or resource name (others)
        namespace: Optional namespace override (default: component's)
    """
    type: str
    selector: str = ''
    namespace: Optional[str] = None

    @property
    def kind(self) -> Optional[CheckType]:
        """Closed check type, or None if the manifest type is unrecognized."""
        try:
            return CheckType(self.type.lower())
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: dict) -> 'ComponentAction':
        if not isinstance(data, dict):
            raise ManifestError(f"Check must be a mapping ({data!r})")
        if 'type' not in data:
            raise ManifestError(f"Check missing required field: type ({data})")
        return cls(
            type=str(data['type']),
            selector=str(data.get('selector', '')),
            namespace=data.get('namespace') or None,
        )


@dataclass(frozen=True)
class Source:
    """Where a component's deployable content comes from.

    Attributes:
        chart: Helm chart reference or local chart path (helm)
        repo: Helm repository URL (helm, optional)
        version: Helm chart version (helm, optional)
        path: Local manifest file or directory (yaml)
        url: Remote manifest URL (yaml)
    """
    chart: Optional[str] = None
    repo: Optional[str] = None
    version: Optional[str] = None
    path: Optional[str] = None
    url: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        """The kubectl -f argument for yaml components."""
        return self.path or self.url

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'Source':
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ManifestError(f"Source must be a mapping ({data!r})")
        return cls(
            chart=data.get('chart'),
            repo=data.get('repo'),
            version=str(data['version']) if data.get('version') is not None else None,
            path=data.get('path'),
            url=data.get('url'),
        )


@dataclass(frozen=True)
class Component:
    """One deployable unit: a namespace, a helm release or a YAML resource set.

    Attributes:
        id: Unique identifier within the manifest (also the helm release name)
        type: Component type
        namespace: Target namespace
        needs: Id of the single predecessor (None = no dependency)
        values: Labels, annotations and helm values, in declared order
        source: Chart or manifest location
        pre_deploy: Checks run before install
        pre_delete: Checks run before uninstall
        pre_upgrade: Checks run before upgrade
        wait_complete: Checks run after install/upgrade
    """
    id: str
    type: ComponentType
    namespace: str = ''
    needs: Optional[str] = None
    values: tuple[Value, ...] = ()
    source: Source = field(default_factory=Source)
    pre_deploy: tuple[ComponentAction, ...] = ()
    pre_delete: tuple[ComponentAction, ...] = ()
    pre_upgrade: tuple[ComponentAction, ...] = ()
    wait_complete: tuple[ComponentAction, ...] = ()

    def __str__(self) -> str:
        return self.id

    def values_of(self, value_type: ValueType) -> dict[str, str]:
        """Values of one type as a name -> value mapping (later entries win)."""
        return {v.name: v.value for v in self.values if v.type == value_type}

    @classmethod
    def from_dict(cls, data: dict) -> 'Component':
        """Create Component from a manifest dictionary."""
        if 'id' not in data:
            raise ManifestError(f"Component missing required field: id ({data})")
        cid = str(data['id'])
        if 'type' not in data:
            raise ManifestError(f"Component '{cid}' missing required field: type")
        raw_type = str(data['type']).lower()
        try:
            ctype = ComponentType(raw_type)
        except ValueError:
            raise ManifestError(
                f"Component '{cid}' has unknown type '{raw_type}'. "
                f"Supported: {', '.join(t.value for t in ComponentType)}"
            )

        checks = {}
        for attr, key in CHECK_PHASE_KEYS.items():
            entries = data.get(key) or []
            if not isinstance(entries, list):
                raise ManifestError(f"Component '{cid}' field '{key}' must be a list")
            checks[attr] = tuple(ComponentAction.from_dict(e) for e in entries)

        source = Source.from_dict(data.get('source'))
        if ctype == ComponentType.HELM and not source.chart:
            raise ManifestError(f"Helm component '{cid}' requires source.chart")
        if ctype == ComponentType.YAML and not source.location:
            raise ManifestError(f"YAML component '{cid}' requires source.path or source.url")

        namespace = data.get('namespace') or ''
        if ctype == ComponentType.NAMESPACE and not namespace:
            raise ManifestError(f"Namespace component '{cid}' requires namespace")

        return cls(
            id=cid,
            type=ctype,
            namespace=namespace,
            needs=data.get('needs') or None,
            values=tuple(Value.from_dict(v) for v in data.get('values') or []),
            source=source,
            **checks,
        )


@dataclass
class Manifest:
    """Application manifest.

    Attributes:
        name: Human-readable manifest name
        components: Components in author-declared order
        source_path: Path where manifest was loaded from (for debugging)
    """
    name: str
    components: list[Component]
    source_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'Manifest':
        """Create Manifest from dictionary.

        Raises:
            ManifestError: If manifest is invalid
        """
        if 'components' not in data:
            raise ManifestError("Manifest missing required field: components")
        if not isinstance(data['components'], list):
            raise ManifestError("Manifest field 'components' must be a list")

        components = []
        for i, component_data in enumerate(data['components']):
            if not isinstance(component_data, dict):
                raise ManifestError(f"Component {i} must be a mapping")
            components.append(Component.from_dict(component_data))

        validate_components(components)

        default_name = source_path.stem if source_path else 'manifest'
        return cls(
            name=data.get('name', default_name),
            components=components,
            source_path=source_path,
        )


def validate_components(components: list[Component]) -> None:
    """Check ids are unique and every 'needs' names a component in the set.

    Cycles are not checked here; build_plan detects them.

    Raises:
        ManifestError: If validation fails
    """
    seen: set[str] = set()
    for c in components:
        if c.id in seen:
            raise ManifestError(f"Duplicate component id: '{c.id}'")
        seen.add(c.id)

    for c in components:
        if c.needs is not None and c.needs not in seen:
            raise ManifestError(
                f"Component '{c.id}' needs unknown component '{c.needs}'"
            )


def load_manifest(path) -> Manifest:
    """Load manifest from a YAML file.

    Args:
        path: Path to manifest YAML file

    Returns:
        Manifest instance

    Raises:
        ManifestError: If file not found or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ManifestError(f"Manifest file not found: {path}")

    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in manifest {path}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {path} must be a YAML object (dict)")

    manifest = Manifest.from_dict(data, source_path=path)
    logger.debug(f"Loaded manifest '{manifest.name}' with {len(manifest.components)} components from {path}")
    return manifest
