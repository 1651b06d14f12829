#!/usr/bin/env python

import logging
import os
import sys
from typing import Iterable, List, Optional

from lxml import etree

from pomio import POMParser, default_fetcher
from pomresolver import (
    DEFAULT_REPOSITORY,
    DEFAULT_SCOPE,
    PROJECT_VERSION,
    Coordinate,
    Dependency,
    Model,
    ResolutionError,
    Resolver,
)

_logger = logging.getLogger(__name__)

# -- Constants --

TEMPLATE: bytes = """\
<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0" \
xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" \
xsi:schemaLocation="http://maven.apache.org/POM/4.0.0 https://maven.apache.org/xsd/maven-4.0.0.xsd">
\t<modelVersion>4.0.0</modelVersion>
</project>
""".encode("UTF-8")


# -- Functions --

def create_child(element, tagname, text=None):
    child = etree.SubElement(element, tagname)
    if text is not None: child.text = text
    return child


def add_coordinate(element, coord: Coordinate, packaging_tag: str = "packaging") -> None:
    if coord.groupId is not None: create_child(element, "groupId", coord.groupId)
    if coord.artifactId is not None: create_child(element, "artifactId", coord.artifactId)
    if coord.version is not None: create_child(element, "version", coord.version)
    if coord.packaging is not None: create_child(element, packaging_tag, coord.packaging)
    if coord.classifier is not None: create_child(element, "classifier", coord.classifier)


def add_dependencies(element, deps: Iterable[Dependency]) -> None:
    dependencies = create_child(element, "dependencies")
    for dep in sorted(deps, key=lambda d: str(d.coord)):
        dependency = create_child(dependencies, "dependency")
        add_coordinate(dependency, dep.coord, packaging_tag="type")
        if dep.scope is not None: create_child(dependency, "scope", dep.scope)


def to_xml(model: Model) -> str:
    """
    Render a model as a POM document, e.g. an effective POM.
    Only what the model tracks is written: coordinates, parent,
    properties, dependency management and dependencies.
    """
    # NB: The remove_blank_text=True option is needed to pretty-print the XML output:
    # https://lxml.de/FAQ.html#why-doesn-t-the-pretty-print-option-reformat-my-xml-output
    root = etree.fromstring(TEMPLATE, parser=etree.XMLParser(remove_blank_text=True))

    if model.parent:
        add_coordinate(create_child(root, "parent"), model.parent)

    add_coordinate(root, model.coord)

    # NB: project.version is derived while building, not declared.
    props = {k: v for k, v in model.props.items() if k != PROJECT_VERSION}
    if props:
        properties = create_child(root, "properties")
        for k in sorted(props):
            create_child(properties, k, props[k])

    if model.dep_mgmt:
        add_dependencies(create_child(root, "dependencyManagement"), model.dependencies(managed=True))

    if model.deps:
        add_dependencies(root, model.dependencies())

    return etree.tostring(root, xml_declaration=True, pretty_print=True, encoding="utf-8").decode()


def parse_coordinate(s: str) -> Coordinate:
    """
    Parse a G:A:V string into a POM coordinate.
    """
    tokens = s.split(":")
    if len(tokens) < 3 or not all(tokens[:3]):
        raise ValueError(f"Invalid coordinate (expected groupId:artifactId:version): {s}")
    return Coordinate.pom(*tokens[:3])


def compile_dependencies(model: Model) -> List[Dependency]:
    return sorted(
        # NB: An undeclared scope means compile.
        (dep for dep in model.dependencies() if (dep.scope or DEFAULT_SCOPE) == DEFAULT_SCOPE),
        key=lambda d: str(d.coord)
    )


# -- Main --

def main(args: List[str], resolver: Optional[Resolver] = None) -> int:
    debug = bool(os.environ.get("DEBUG", None))
    log_format = "[%(levelname)s] %(message)s"
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format=log_format, level=log_level)

    if resolver is None:
        repository = os.environ.get("MAVEN_REPOSITORY", DEFAULT_REPOSITORY)
        resolver = Resolver(
            repository_base=repository,
            fetcher=default_fetcher(remote_repos=[repository]),
            parser=POMParser(),
        )

    as_xml = "--xml" in args
    coords = [arg for arg in args if ":" in arg]
    if not coords:
        _logger.error("Usage: effective_pom.py [--xml] groupId:artifactId:version [...]")
        return 2

    for arg in coords:
        try:
            coord = parse_coordinate(arg)
        except ValueError as e:
            _logger.error(str(e))
            return 2
        _logger.info(f"Resolving {coord}...")
        try:
            model = resolver.build_effective_pom(coord)
        except ResolutionError as e:
            _logger.error(str(e))
            return 1

        if as_xml:
            print(to_xml(model))
        else:
            for dep in compile_dependencies(model):
                print(dep.coord)

    return 0


def cli():
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
