import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple

_logger = logging.getLogger(__name__)

# -- Constants --

DEFAULT_REPOSITORY = "https://repo.maven.apache.org/maven2"
DEFAULT_PACKAGING = "jar"
DEFAULT_SCOPE = "compile"
POM_PACKAGING = "pom"
IMPORT_SCOPE = "import"
PROJECT_VERSION = "project.version"


# -- Functions --

def coord2str(*fields: Optional[str]) -> str:
    # Missing fields are kept in place so the position of each field stays readable.
    return ":".join("?" if f is None else f for f in fields)


def normalize_deps(
    deps: Iterable["Dependency"],
    parent: "Coordinate",
    default_packaging: str
) -> Dict["DependencyKey", "Dependency"]:
    """
    Normalize each dependency against the parent coordinate,
    re-keying the result by the normalized group and artifact.
    """
    normalized = [dep.normalize(parent, default_packaging) for dep in deps]
    return {dep.key: dep for dep in normalized}


# -- Exceptions --

class ResolutionError(RuntimeError):
    """
    Failure while resolving a POM: transport, data or coordinate problems.
    No distinction is made between retriable and fatal failures.
    """

    @staticmethod
    def cant_resolve(coord: "Coordinate", cause: str) -> "ResolutionError":
        return ResolutionError(f"Can't resolve {coord}: {cause}")


class MissingParameterError(ResolutionError):

    def __init__(self, coord: "Coordinate", field_name: str):
        super().__init__(f"'{field_name}' is missing from {coord}")
        self.coord = coord
        self.field_name = field_name


class InvalidDataError(ResolutionError):

    def __init__(self, details: str):
        super().__init__(f"Invalid input data: {details}")
        self.details = details


class CycleError(ResolutionError):

    def __init__(self, chain: Iterable["Coordinate"]):
        self.chain: Tuple[Coordinate, ...] = tuple(chain)
        super().__init__("Cycle detected: " + " -> ".join(str(c) for c in self.chain))


# -- Classes --

@dataclass(frozen=True)
class DependencyKey:
    """
    This is a G:A -- the slot a dependency occupies regardless of its version.
    """
    groupId: Optional[str] = None
    artifactId: Optional[str] = None

    def __str__(self):
        return coord2str(self.groupId, self.artifactId)


@dataclass(frozen=True)
class Coordinate:
    """
    This is a G:A:V:P:C, any part of which may be missing.
    Coordinates of a POM as written on disk are often partial;
    they become complete once normalized against a parent.
    """
    groupId: Optional[str] = None
    artifactId: Optional[str] = None
    version: Optional[str] = None
    packaging: Optional[str] = None
    classifier: Optional[str] = None

    @staticmethod
    def pom(groupId: str, artifactId: str, version: str) -> "Coordinate":
        return Coordinate(groupId, artifactId, version, POM_PACKAGING)

    def __str__(self):
        return coord2str(self.groupId, self.artifactId, self.version, self.packaging, self.classifier)

    @property
    def key(self) -> DependencyKey:
        return DependencyKey(self.groupId, self.artifactId)

    def same_ga(self, other: "Coordinate") -> bool:
        return self.key == other.key

    def with_packaging(self, packaging: str) -> "Coordinate":
        return replace(self, packaging=packaging)

    def normalize(self, parent: "Coordinate", default_packaging: str) -> "Coordinate":
        """
        Fill in the missing parts of this coordinate.

        :param parent: Coordinate supplying missing groupId, artifactId and version.
        :param default_packaging: Packaging to use when none is declared.
        :return: The normalized coordinate. The classifier is never taken from the parent.
        """
        return Coordinate(
            groupId=self.groupId if self.groupId is not None else parent.groupId,
            artifactId=self.artifactId if self.artifactId is not None else parent.artifactId,
            version=self.version if self.version is not None else parent.version,
            packaging=self.packaging if self.packaging is not None else default_packaging,
            classifier=self.classifier,
        )

    def interpolate(self, properties: Dict[str, str]) -> "Coordinate":
        """
        Replace the first ${...} expression of the version with its property value.

        Only the version is considered, and only one expression is evaluated;
        nested or chained expressions are left as they are. An unknown property
        or an unterminated expression leaves the version untouched.
        """
        v = self.version
        if v is None: return self
        start = v.find("${")
        if start < 0: return self
        end = v.find("}", start + 2)
        if end < 0: return self
        value = properties.get(v[start + 2:end])
        if value is None: return self
        return replace(self, version=v[:start] + value + v[end + 1:])


@dataclass(frozen=True)
class Dependency:
    """
    This is a Coordinate plus scope.
    """
    coord: Coordinate
    scope: Optional[str] = None

    def __str__(self):
        return f"{self.coord}:{self.scope}" if self.scope else str(self.coord)

    @property
    def key(self) -> DependencyKey:
        return self.coord.key

    @property
    def is_bom(self) -> bool:
        return self.scope == IMPORT_SCOPE

    def normalize(self, parent: Coordinate, default_packaging: str) -> "Dependency":
        return Dependency(
            self.coord.normalize(parent, default_packaging),
            self.scope if self.scope is not None else DEFAULT_SCOPE,
        )

    def interpolate(self, properties: Dict[str, str]) -> "Dependency":
        return replace(self, coord=self.coord.interpolate(properties))


@dataclass
class DependencyManagement:
    """
    Declared (not necessarily used) dependency versions and scopes,
    including import-scoped BOM references.
    """
    deps: Dict[DependencyKey, Dependency] = field(default_factory=dict)

    def copy(self) -> "DependencyManagement":
        return DependencyManagement(dict(self.deps))

    def boms(self) -> List[Dependency]:
        return [dep for dep in self.deps.values() if dep.is_bom]


@dataclass
class Model:
    """
    A minimal Maven metadata model, tracking only coordinates, dependencies and properties.
    """
    coord: Coordinate
    parent: Optional[Coordinate] = None
    dep_mgmt: Optional[DependencyManagement] = None
    deps: Dict[DependencyKey, Dependency] = field(default_factory=dict)
    props: Dict[str, str] = field(default_factory=dict)

    def __str__(self):
        return str(self.coord)

    def copy(self) -> "Model":
        # Coordinates and dependencies are immutable; only the containers need copying.
        return Model(
            coord=self.coord,
            parent=self.parent,
            dep_mgmt=self.dep_mgmt.copy() if self.dep_mgmt else None,
            deps=dict(self.deps),
            props=dict(self.props),
        )

    def dependencies(self, managed: bool = False) -> List[Dependency]:
        if managed: return list(self.dep_mgmt.deps.values()) if self.dep_mgmt else []
        return list(self.deps.values())


class Fetcher(ABC):
    """
    Logic for obtaining the raw text of a POM from its location.
    """

    @abstractmethod
    def fetch(self, location: str) -> str:
        """
        Retrieve a document.

        :param location: URL or path of the document, as built by Resolver.create_url.
        :return: The document text.
        :raises ResolutionError: If the document cannot be retrieved.
        """
        ...


class Parser(ABC):
    """
    Logic for turning the raw text of a POM into a Model.
    """

    @abstractmethod
    def parse(self, text: str) -> Model:
        """
        Parse a document.

        :param text: The raw POM text.
        :return: The parsed, not yet normalized, model.
        :raises InvalidDataError: If the text is not a POM.
        """
        ...


class Resolver:
    """
    Builds effective POMs.
    * Maps coordinates to repository locations.
    * Fetches and normalizes individual POMs, at most once per coordinate.
    * Merges parent chains and imported BOMs into an effective model.
    """

    def __init__(
            self,
            repository_base: str = DEFAULT_REPOSITORY,
            fetcher: Optional[Fetcher] = None,
            parser: Optional[Parser] = None,
    ):
        """
        Create a resolver with an empty cache.

        :param repository_base:
            Base URL (or path) of the Maven repository to build POM locations from.
        :param fetcher:
            Optional default mechanism for retrieving POM text.
            Can be overridden on each call.
        :param parser:
            Optional default mechanism for parsing POM text.
            Can be overridden on each call.
        """
        self.repository_base: str = repository_base.rstrip("/")
        self.fetcher: Optional[Fetcher] = fetcher
        self.parser: Optional[Parser] = parser
        self.cache: Dict[Coordinate, Model] = {}
        self._cache_lock = Lock()
        self._fetch_locks: Dict[Coordinate, Lock] = {}

    def create_url(self, coord: Coordinate) -> str:
        """
        Location of the given artifact in the repository. E.g.:
        - com.example:lib:1.0:jar -> {base}/com/example/lib/1.0/lib-1.0.jar
        - org.lwjgl:lwjgl:3.3.1:jar:natives-linux -> {base}/org/lwjgl/lwjgl/3.3.1/lwjgl-3.3.1-natives-linux.jar
        """
        for name in ("groupId", "artifactId", "version", "packaging"):
            if getattr(coord, name) is None: raise MissingParameterError(coord, name)
        g, a, v = coord.groupId, coord.artifactId, coord.version
        classifier_suffix = f"-{coord.classifier}" if coord.classifier is not None else ""
        return (
            f"{self.repository_base}/{g.replace('.', '/')}/{a}/{v}/"
            f"{a}-{v}{classifier_suffix}.{coord.packaging}"
        )

    def fetch_project(
            self,
            coord: Coordinate,
            fetcher: Optional[Fetcher] = None,
            parser: Optional[Parser] = None,
    ) -> Model:
        """
        Get the normalized model of a single POM, without any merging.

        The POM is fetched and parsed only if this resolver has not seen it
        before. Its own coordinate, the coordinates of its dependencies and
        managed dependencies are then filled in from its parent, once, before
        the model is cached. This holds across threads sharing the resolver.

        :param coord: Coordinate of the project; its packaging is ignored.
        :param fetcher: Fetcher to use instead of the resolver's default.
        :param parser: Parser to use instead of the resolver's default.
        :return: A copy of the cached model.
        """
        # Descriptors are always POM documents.
        coord = coord.with_packaging(POM_PACKAGING)

        cached = self._cached(coord)
        if cached is not None: return cached

        fetcher, parser = self._capabilities(fetcher, parser)
        url = self.create_url(coord)

        # Threads missing on the same coordinate wait for the first one's fetch.
        with self._cache_lock:
            fetch_lock = self._fetch_locks.setdefault(coord, Lock())
        with fetch_lock:
            cached = self._cached(coord)
            if cached is not None: return cached

            _logger.debug(f"fetching {url}...")
            text = fetcher.fetch(url)
            parsed = parser.parse(text)

            model = self._normalize(parsed)
            if model.coord != coord:
                _logger.debug(f"{url} declares {model.coord}, expected {coord}")

            _logger.debug(f"caching {model.coord}")
            with self._cache_lock:
                self.cache[model.coord] = model.copy()
            return model

    def build_effective_pom(
            self,
            coord: Coordinate,
            fetcher: Optional[Fetcher] = None,
            parser: Optional[Parser] = None,
    ) -> Model:
        """
        Get the effective model of a project: its own POM, with the dependencies
        of its parent chain and the managed dependencies of its imported BOMs
        merged in.

        :param coord: Coordinate of the project; its packaging is ignored.
        :param fetcher: Fetcher to use instead of the resolver's default.
        :param parser: Parser to use instead of the resolver's default.
        :return: The effective model.
        :raises CycleError: If a project is its own ancestor or imports itself.
        """
        fetcher, parser = self._capabilities(fetcher, parser)
        return self._build(coord, fetcher, parser, ())

    def _build(
            self,
            coord: Coordinate,
            fetcher: Fetcher,
            parser: Parser,
            resolving: Tuple[Coordinate, ...]
    ) -> Model:
        _logger.debug(f"building an effective pom for {coord}")
        coord = coord.with_packaging(POM_PACKAGING)
        if coord in resolving: raise CycleError(resolving + (coord,))
        resolving += (coord,)

        model = self.fetch_project(coord, fetcher, parser)
        if coord.version is not None:
            model.props[PROJECT_VERSION] = coord.version

        # -- parent inheritance --

        # Merge in the dependencies of the parent's effective POM.
        # Anything the child declares wins, even without a version.
        if model.parent:
            parent_model = self._build(model.parent, fetcher, parser, resolving)
            _logger.debug(f"got a parent POM: {parent_model.coord}")
            for k, dep in parent_model.deps.items():
                if k not in model.deps: model.deps[k] = dep

        # -- dependency management import --

        # NB: The merged dependency management is exposed on the model only.
        # Managed versions are NOT injected into the direct dependencies.
        if model.dep_mgmt:
            dep_mgmt = DependencyManagement({
                k: dep.interpolate(model.props)
                for k, dep in model.dep_mgmt.deps.items()
            })
            for bom in dep_mgmt.boms():
                _logger.debug(f"got a BOM artifact: {bom.coord}")
                bom_model = self._build(bom.coord, fetcher, parser, resolving)
                if bom_model.dep_mgmt:
                    dep_mgmt.deps.update(bom_model.dep_mgmt.deps)
            model.dep_mgmt = dep_mgmt

        return model

    def _normalize(self, parsed: Model) -> Model:
        coord = parsed.coord.with_packaging(POM_PACKAGING)
        if not parsed.parent:
            return replace(parsed, coord=coord)

        # Fill in the project's missing coordinates using the parent's.
        parent = parsed.parent.with_packaging(POM_PACKAGING)
        dep_mgmt = parsed.dep_mgmt
        if dep_mgmt is not None:
            dep_mgmt = DependencyManagement(normalize_deps(dep_mgmt.deps.values(), parent, DEFAULT_PACKAGING))
        return replace(
            parsed,
            coord=coord.normalize(parent, POM_PACKAGING),
            parent=parent,
            dep_mgmt=dep_mgmt,
            deps=normalize_deps(parsed.deps.values(), parent, DEFAULT_PACKAGING),
        )

    def _cached(self, coord: Coordinate) -> Optional[Model]:
        with self._cache_lock:
            cached = self.cache.get(coord)
        if cached is None: return None
        _logger.debug(f"returning from cache {coord}...")
        return cached.copy()

    def _capabilities(
            self,
            fetcher: Optional[Fetcher],
            parser: Optional[Parser]
    ) -> Tuple[Fetcher, Parser]:
        fetcher = fetcher or self.fetcher
        parser = parser or self.parser
        if fetcher is None: raise ValueError("No fetcher given and no default fetcher configured")
        if parser is None: raise ValueError("No parser given and no default parser configured")
        return fetcher, parser
