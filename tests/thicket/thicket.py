#!/usr/bin/env python

"""
Generate a complex collection of parent POMs and BOMs, and a project
that inherits from them. The goal is to exercise deep parent chains and
nested BOM imports, and test the correctness of the effective POM builder.
"""

import random
import sys
from pathlib import Path
from typing import Dict, List, Optional

from lxml import etree

from pomresolver import Coordinate, Fetcher, ResolutionError

# -- Constants --

OUTPUT_DIR = Path("thicket")
TEMPLATE: bytes = """\
<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0" \
xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" \
xsi:schemaLocation="http://maven.apache.org/POM/4.0.0 https://maven.apache.org/xsd/maven-4.0.0.xsd">
\t<modelVersion>4.0.0</modelVersion>
</project>
""".encode("UTF-8")

NAMES = [
    "active", "bullet", "coral", "detail", "essence", "fonts", "games",
    "heating", "ignore", "journal", "knives", "lodge", "major", "neutral",
    "optics", "permits", "quoted", "rotary", "socket", "tickets", "upload",
    "vendors", "weight", "xhtml", "younger", "zoning",
]

GROUP_ID = "org.example.thicket"
ANCESTOR_COUNT = 4
MAX_IMPORTS = 3


# -- Functions --

def create_child(element, tagname, text=None):
    child = etree.SubElement(element, tagname)
    if text: child.text = text
    return child


# -- Classes --

class Thicket:
    """
    A generated tree of POMs, keyed by coordinate.
    The same seed always yields the same thicket.
    """

    def __init__(self, seed: int = 0, ancestor_count: int = ANCESTOR_COUNT):
        self.random = random.Random(seed)
        self.versions = set()
        self.poms: Dict[Coordinate, str] = {}
        self.boms: List[Coordinate] = []
        v = self.random_version()
        self.root = Coordinate.pom(GROUP_ID, "thicket", v)
        self.generate_pom("thicket", version=v, ancestor_count=ancestor_count)

    def random_version(self) -> str:
        assert len(self.versions) < 9999
        v = self.random.randint(0, 9999)
        while v in self.versions:
            v = self.random.randint(0, 9999)
        self.versions.add(v)
        return str(v)

    def generate_pom(self, name: str, version: str, packaging: Optional[str] = None, ancestor_count: int = 0, depth: int = 0) -> None:
        # NB: The remove_blank_text=True option is needed to pretty-print the XML output:
        # https://lxml.de/FAQ.html#why-doesn-t-the-pretty-print-option-reformat-my-xml-output
        root = etree.fromstring(TEMPLATE, parser=etree.XMLParser(remove_blank_text=True))
        if ancestor_count > 0:
            # The groupId is inherited from the parent.
            parent = create_child(root, "parent")
            parent_name = f"{name}-parent{ancestor_count}"
            v = self.random_version()
            create_child(parent, "groupId", GROUP_ID)
            create_child(parent, "artifactId", parent_name)
            create_child(parent, "version", v)
            create_child(parent, "relativePath")
            self.generate_pom(parent_name, v, packaging="pom", ancestor_count=ancestor_count - 1, depth=depth + 1)
        else:
            create_child(root, "groupId", GROUP_ID)

        create_child(root, "artifactId", name)
        create_child(root, "version", version)
        if packaging: create_child(root, "packaging", packaging)

        bom_count = min(MAX_IMPORTS - depth, self.random.randint(0, MAX_IMPORTS))
        dep_mgmt = create_child(root, "dependencyManagement")
        dep_mgmt_deps = create_child(dep_mgmt, "dependencies")
        for i in range(bom_count):
            dep = create_child(dep_mgmt_deps, "dependency")
            bom_name = f"{name}-bom{i + 1}"
            v = self.random_version()
            create_child(dep, "groupId", GROUP_ID)
            create_child(dep, "artifactId", bom_name)
            create_child(dep, "version", v)
            create_child(dep, "type", "pom")
            create_child(dep, "scope", "import")
            self.boms.append(Coordinate.pom(GROUP_ID, bom_name, v))
            self.generate_pom(bom_name, v, packaging="pom", ancestor_count=ancestor_count, depth=depth + 1)

        # Manage some dependencies, sometimes through a version property.
        properties = None
        dep_count = self.random.randint(0, 5)
        deps = sorted(set(self.random.choices(NAMES, k=dep_count)))
        for artifact_id in deps:
            dep = create_child(dep_mgmt_deps, "dependency")
            create_child(dep, "groupId", GROUP_ID)
            create_child(dep, "artifactId", artifact_id)
            v = self.random_version()
            if self.random.choice((True, False)):
                if properties is None:
                    properties = create_child(root, "properties")
                prop_tag = artifact_id + ".version"
                create_child(properties, prop_tag, v)
                v = "${" + prop_tag + "}"
            create_child(dep, "version", v)

        # And depend on something, without a version.
        deps_el = create_child(root, "dependencies")
        dep = create_child(deps_el, "dependency")
        create_child(dep, "groupId", GROUP_ID)
        create_child(dep, "artifactId", self.random.choice(NAMES))

        xml = etree.tostring(root, xml_declaration=True, pretty_print=True, encoding="utf-8").decode()
        self.poms[Coordinate.pom(GROUP_ID, name, version)] = xml


class MemoryFetcher(Fetcher):
    """
    A fetcher serving documents from a dict, recording every location requested.
    """

    def __init__(self, documents: Dict[str, str]):
        self.documents = documents
        self.calls: List[str] = []

    def fetch(self, location: str) -> str:
        self.calls.append(location)
        if location not in self.documents:
            raise ResolutionError(f"Can't fetch {location}: not found")
        return self.documents[location]


# -- Main --

if __name__ == "__main__":
    seed = int(sys.argv[1]) if len(sys.argv) > 1 else 0
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    thicket = Thicket(seed)
    for coord, xml in thicket.poms.items():
        with open((OUTPUT_DIR / coord.artifactId).with_suffix(".pom"), "w") as f:
            f.write(xml)
