"""
Default fetch and parse capabilities for the POM resolver.
"""

import logging
from os import environ
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
from urllib.parse import unquote, urlparse
from xml.etree import ElementTree

import requests

from pomresolver import (
    DEFAULT_REPOSITORY,
    Coordinate,
    Dependency,
    DependencyKey,
    DependencyManagement,
    Fetcher,
    InvalidDataError,
    Model,
    Parser,
    ResolutionError,
)

_logger = logging.getLogger(__name__)

# -- Constants --

DEFAULT_TIMEOUT = 30


# -- Functions --

def text(p: Path) -> str:
    try:
        with open(p, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise ResolutionError(f"Can't read {p}: {e}") from e


def strip_ns(el: ElementTree.Element) -> None:
    """
    Remove namespace prefixes from elements and attributes.
    Credit: https://stackoverflow.com/a/32552776/1207769
    """
    if el.tag.startswith("{"):
        el.tag = el.tag[el.tag.find("}") + 1:]
    for k in list(el.attrib.keys()):
        if k.startswith("{"):
            k2 = k[k.find("}") + 1:]
            el.attrib[k2] = el.attrib[k]
            del el.attrib[k]
    for child in el:
        strip_ns(child)


def value(el: ElementTree.Element, path: str) -> Optional[str]:
    # NB: Empty elements such as <version/> count as absent.
    v = el.findtext(path)
    if v is None: return None
    return v.strip() or None


# -- Parsing --

class POMParser(Parser):
    """
    Parses Maven POM XML into a Model, using ElementTree.
    Only coordinates, parent, dependencies, dependency management
    and properties are read; everything else is ignored.
    """

    def parse(self, text: str) -> Model:
        try:
            root = ElementTree.fromstring(text)
        except ElementTree.ParseError as e:
            raise InvalidDataError(f"malformed XML: {e}") from e
        strip_ns(root)
        if root.tag != "project":
            raise InvalidDataError("invalid XML content, no <project> tag")

        parent_el = root.find("parent")
        dep_mgmt_el = root.find("dependencyManagement")
        return Model(
            coord=self.coordinate(root),
            parent=self.coordinate(parent_el) if parent_el is not None else None,
            dep_mgmt=(
                DependencyManagement(self.dependencies(dep_mgmt_el))
                if dep_mgmt_el is not None
                else None
            ),
            deps=self.dependencies(root),
            props=self.properties(root),
        )

    @staticmethod
    def coordinate(el: ElementTree.Element) -> Coordinate:
        return Coordinate(
            groupId=value(el, "groupId"),
            artifactId=value(el, "artifactId"),
            version=value(el, "version"),
            # Dependencies say <type>, projects say <packaging>.
            packaging=value(el, "type") or value(el, "packaging"),
            classifier=value(el, "classifier"),
        )

    @staticmethod
    def dependencies(el: ElementTree.Element) -> Dict[DependencyKey, Dependency]:
        deps = [
            Dependency(POMParser.coordinate(dep_el), value(dep_el, "scope"))
            for dep_el in el.findall("dependencies/dependency")
        ]
        return {dep.key: dep for dep in deps}

    @staticmethod
    def properties(el: ElementTree.Element) -> Dict[str, str]:
        return {prop.tag: (prop.text or "").strip() for prop in el.findall("properties/*")}


# -- Fetching --

class HTTPFetcher(Fetcher):
    """
    A fetcher that downloads documents over HTTP(S) with requests.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session: requests.Session = session or requests.Session()

    def fetch(self, location: str) -> str:
        try:
            response: requests.Response = self.session.get(location, timeout=self.timeout)
        except requests.RequestException as e:
            raise ResolutionError(f"Can't fetch {location}: {e}") from e
        if response.status_code != 200:
            raise ResolutionError(f"Can't fetch {location}: HTTP {response.status_code}")
        return response.text


class LocalRepositoryFetcher(Fetcher):
    """
    A fetcher that reads documents from the local filesystem:
    * the local repository cache (e.g. ~/.m2/repository); and
    * any locally available repository storage folders.
    Locations under a known remote repository base are mapped onto these folders.
    Other locations are read as plain paths or file:// URLs.
    """

    def __init__(
            self,
            repo_cache: Optional[Path] = None,
            local_repos: Optional[List[Path]] = None,
            remote_repos: Optional[Iterable[str]] = None,
    ):
        """
        Create a local repository fetcher.

        :param repo_cache:
            Optional path to the Maven local repository cache directory.
            If not given, the M2_REPO environment variable is used,
            falling back to ~/.m2/repository.
        :param local_repos:
            Optional list of Maven repository storage local paths to check, after the cache.
            These directories are treated as *read-only*.
        :param remote_repos:
            Optional base URLs whose layout the local folders mirror.
            By default, only Maven Central is mirrored.
        """
        self.repo_cache: Path = Path(repo_cache or environ.get("M2_REPO", Path("~").expanduser() / ".m2" / "repository"))
        self.local_repos: List[Path] = [Path(p) for p in local_repos] if local_repos else []
        self.remote_repos: List[str] = [
            r.rstrip("/") for r in (remote_repos if remote_repos is not None else [DEFAULT_REPOSITORY])
        ]

    def candidates(self, location: str) -> List[Path]:
        """
        Local paths where the document at the given location might be, in order of preference.
        """
        for base in self.remote_repos:
            if location.startswith(base + "/"):
                relative = location[len(base) + 1:]
                return [root / relative for root in [self.repo_cache] + self.local_repos]
        if location.startswith("file:"):
            return [Path(unquote(urlparse(location).path))]
        return [Path(location)]

    def fetch(self, location: str) -> str:
        paths = self.candidates(location)
        for p in paths:
            if p.is_file():
                _logger.debug(f"reading {p}")
                return text(p)
        raise ResolutionError(f"Can't fetch {location}: not found in {', '.join(str(p) for p in paths)}")


class FallbackFetcher(Fetcher):
    """
    A fetcher that tries other fetchers in turn, returning the first success.
    """

    def __init__(self, *fetchers: Fetcher):
        if not fetchers: raise ValueError("At least one fetcher is required")
        self.fetchers = fetchers

    def fetch(self, location: str) -> str:
        error: Optional[ResolutionError] = None
        for fetcher in self.fetchers:
            try:
                return fetcher.fetch(location)
            except ResolutionError as e:
                _logger.debug(f"{type(fetcher).__name__} failed: {e}")
                error = e
        raise error


def default_fetcher(
        repo_cache: Optional[Union[str, Path]] = None,
        remote_repos: Optional[Iterable[str]] = None,
) -> Fetcher:
    """
    Local repository cache first, then the network.
    """
    return FallbackFetcher(
        LocalRepositoryFetcher(repo_cache=repo_cache, remote_repos=remote_repos),
        HTTPFetcher(),
    )
