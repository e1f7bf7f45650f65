import shutil
import tempfile
import unittest
from pathlib import Path

import httpx

from raiz.core.model import Scope
from raiz.errors import ResolutionError, ResolutionErrorKind
from raiz.resolvers.maven import MavenResolver, PomRepository, parse_pom

REPO = "https://repo.test/maven2"


def pom(gav, deps="", extra=""):
    g, a, v = gav.split(":")
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
  <groupId>{g}</groupId>
  <artifactId>{a}</artifactId>
  <version>{v}</version>
  {extra}
  <dependencies>{deps}</dependencies>
</project>"""


def dep(gav, scope="", optional=False, exclusions=""):
    g, a, *rest = gav.split(":")
    version = f"<version>{rest[0]}</version>" if rest else ""
    scope_el = f"<scope>{scope}</scope>" if scope else ""
    optional_el = "<optional>true</optional>" if optional else ""
    excl = f"<exclusions>{exclusions}</exclusions>" if exclusions else ""
    return (f"<dependency><groupId>{g}</groupId><artifactId>{a}</artifactId>"
            f"{version}{scope_el}{optional_el}{excl}</dependency>")


def exclusion(ga):
    g, a = ga.split(":")
    return f"<exclusion><groupId>{g}</groupId><artifactId>{a}</artifactId></exclusion>"


REMOTE = {
    "com.fasterxml.jackson.core:jackson-databind:2.13.0": pom(
        "com.fasterxml.jackson.core:jackson-databind:2.13.0",
        dep("com.fasterxml.jackson.core:jackson-core:${project.version}")
        + dep("com.fasterxml.jackson.core:jackson-annotations:2.13.0"),
    ),
    "com.fasterxml.jackson.core:jackson-core:2.13.0": pom(
        "com.fasterxml.jackson.core:jackson-core:2.13.0",
        dep("org.deep:deep-lib:1.0") + dep("org.opt:never:1.0", optional=True),
    ),
    "org.deep:deep-lib:1.0": pom("org.deep:deep-lib:1.0"),
    "org.lib:managed-lib:3.0": pom(
        "org.lib:managed-lib:3.0",
        dep("org.t:test-only:1.0", scope="test") + dep("org.r:rt:1.0", scope="runtime"),
    ),
    "org.r:rt:1.0": pom("org.r:rt:1.0"),
    "junit:junit:4.12": pom("junit:junit:4.12", dep("org.hamcrest:hamcrest-core:1.3")),
    "org.hamcrest:hamcrest-core:1.3": pom("org.hamcrest:hamcrest-core:1.3"),
    "com.acme:bom:1.0": pom(
        "com.acme:bom:1.0",
        extra="<packaging>pom</packaging><dependencyManagement><dependencies>"
              + dep("org.lib:managed-lib:3.0") + "</dependencies></dependencyManagement>",
    ),
}

ROOT_POM = pom(
    "com.acme:app:1.0",
    dep("com.fasterxml.jackson.core:jackson-databind:${jackson.version}",
        exclusions=exclusion("com.fasterxml.jackson.core:jackson-annotations"))
    + dep("org.lib:managed-lib")
    + dep("junit:junit:4.12", scope="test")
    + dep("org.opt:optional-lib:1.0", optional=True),
    extra="<properties><jackson.version>2.13.0</jackson.version></properties>"
          "<dependencyManagement><dependencies>"
          "<dependency><groupId>com.acme</groupId><artifactId>bom</artifactId><version>1.0</version>"
          "<type>pom</type><scope>import</scope></dependency>"
          "</dependencies></dependencyManagement>",
)


def transport(poms, requests=None):
    by_path = {}
    for gav, content in poms.items():
        g, a, v = gav.split(":")
        by_path["/maven2" + PomRepository.pom_path(g, a, v)] = content

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request.url.path)
        content = by_path.get(request.url.path)
        if content is None:
            return httpx.Response(404)
        return httpx.Response(200, text=content)

    return httpx.MockTransport(handler)


class TestParsePom(unittest.TestCase):

    def test_namespaced_pom(self):
        parsed = parse_pom(ROOT_POM)
        self.assertEqual(parsed.artifact_id, "app")
        self.assertEqual(parsed.properties["jackson.version"], "2.13.0")
        self.assertEqual(len(parsed.dependencies), 4)
        self.assertEqual(parsed.managed[0].scope, "import")
        databind = parsed.dependencies[0]
        self.assertIn(("com.fasterxml.jackson.core", "jackson-annotations"), databind.exclusions)

    def test_parent_defaults(self):
        parsed = parse_pom(pom("com.acme:child:2.0", extra=(
            "<parent><groupId>com.acme</groupId><artifactId>parent</artifactId><version>2.0</version></parent>"
        )))
        self.assertEqual(parsed.parent, ("com.acme", "parent", "2.0", "../pom.xml"))


class TestMavenResolver(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.project = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.project, ignore_errors=True)

    def write(self, relative, content):
        target = self.project / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    async def resolve(self, root_pom=ROOT_POM, remote=None, **kwargs):
        self.write("pom.xml", root_pom)
        resolver = MavenResolver(REPO, transport=transport(REMOTE if remote is None else remote), **kwargs)
        result = await resolver.resolve(self.project)
        return result, {f"{n.coordinate.key}": n for n in result.nodes}

    async def test_transitive_graph(self):
        result, nodes = await self.resolve()
        self.assertEqual(result.resolver_used, "Maven")

        self.assertEqual(nodes["com.fasterxml.jackson.core:jackson-databind"].depth, 0)
        core = nodes["com.fasterxml.jackson.core:jackson-core"]
        self.assertEqual(core.depth, 1)
        self.assertEqual(core.coordinate.version, "2.13.0")
        self.assertIs(core.parent, nodes["com.fasterxml.jackson.core:jackson-databind"])
        self.assertEqual(nodes["org.deep:deep-lib"].depth, 2)

    async def test_bom_import_supplies_version(self):
        _, nodes = await self.resolve()
        self.assertEqual(nodes["org.lib:managed-lib"].coordinate.version, "3.0")

    async def test_scope_propagation(self):
        _, nodes = await self.resolve()
        self.assertEqual(nodes["junit:junit"].scope, Scope.TEST)
        self.assertEqual(nodes["org.hamcrest:hamcrest-core"].scope, Scope.TEST)
        self.assertEqual(nodes["org.r:rt"].scope, Scope.RUNTIME)
        # test dependencies of a dependency are not inherited
        self.assertNotIn("org.t:test-only", nodes)

    async def test_exclusions_and_optionals(self):
        result, nodes = await self.resolve()
        self.assertNotIn("com.fasterxml.jackson.core:jackson-annotations", nodes)
        self.assertNotIn("org.opt:never", nodes)
        # a direct optional dependency is still part of the build
        self.assertTrue(nodes["org.opt:optional-lib"].optional)
        self.assertTrue(any("org.opt:optional-lib" in d for d in result.diagnostics))

    async def test_max_depth(self):
        _, nodes = await self.resolve(max_depth=1)
        self.assertIn("com.fasterxml.jackson.core:jackson-core", nodes)
        self.assertNotIn("org.deep:deep-lib", nodes)

    async def test_nearest_declaration_wins(self):
        root = pom("com.acme:app:1.0",
                   dep("com.fasterxml.jackson.core:jackson-core:2.13.0") + dep("org.deep:deep-lib:2.0"))
        _, nodes = await self.resolve(root)
        deep = nodes["org.deep:deep-lib"]
        self.assertEqual(deep.coordinate.version, "2.0")
        self.assertEqual(deep.depth, 0)

    async def test_local_parent_inheritance(self):
        self.write("pom.xml", pom(
            "com.acme:parent:1.0",
            dep("org.apache.commons:commons-lang3:3.12.0"),
            extra="<packaging>pom</packaging><properties><guava.version>31.0-jre</guava.version></properties>"
                  "<dependencyManagement><dependencies>"
                  + dep("com.google.guava:guava:${guava.version}")
                  + "</dependencies></dependencyManagement>",
        ))
        self.write("child/pom.xml", pom(
            "com.acme:child:1.0",
            dep("com.google.guava:guava"),
            extra="<parent><groupId>com.acme</groupId><artifactId>parent</artifactId>"
                  "<version>1.0</version></parent>",
        ))
        resolver = MavenResolver(REPO, transport=transport({}))
        result = await resolver.resolve(self.project / "child" / "pom.xml")
        versions = {n.coordinate.key: n.coordinate.version for n in result.nodes}
        self.assertEqual(versions, {
            "com.google.guava:guava": "31.0-jre",
            "org.apache.commons:commons-lang3": "3.12.0",
        })

    async def test_malformed_local_parent_uses_repository(self):
        self.write("pom.xml", "<project><unclosed></project>")
        self.write("child/pom.xml", pom(
            "com.acme:child:1.0",
            dep("com.google.guava:guava"),
            extra="<parent><groupId>com.acme</groupId><artifactId>parent</artifactId>"
                  "<version>1.0</version></parent>",
        ))
        remote = {"com.acme:parent:1.0": pom(
            "com.acme:parent:1.0",
            extra="<packaging>pom</packaging><dependencyManagement><dependencies>"
                  + dep("com.google.guava:guava:32.1.2-jre")
                  + "</dependencies></dependencyManagement>",
        )}
        requests = []
        resolver = MavenResolver(REPO, transport=transport(remote, requests))
        result = await resolver.resolve(self.project / "child" / "pom.xml")

        self.assertEqual([n.coordinate.version for n in result.nodes], ["32.1.2-jre"])
        self.assertIn("/maven2/com/acme/parent/1.0/parent-1.0.pom", requests)

    async def test_modules_are_resolved_and_reactor_skipped(self):
        self.write("core/pom.xml", pom("com.acme:core:1.0", dep("org.deep:deep-lib:1.0")))
        root = pom("com.acme:app:1.0", dep("com.acme:core:1.0"),
                   extra="<packaging>pom</packaging><modules><module>core</module><module>gone</module></modules>")
        requests = []
        self.write("pom.xml", root)
        resolver = MavenResolver(REPO, transport=transport(REMOTE, requests))
        result = await resolver.resolve(self.project)

        self.assertEqual([n.coordinate.key for n in result.nodes], ["org.deep:deep-lib"])
        self.assertTrue(any("gone" in d for d in result.diagnostics))
        self.assertFalse(any("/com/acme/core/" in p for p in requests))

    async def test_malformed_pom(self):
        self.write("pom.xml", "<project><unclosed></project>")
        with self.assertRaises(ResolutionError) as ctx:
            await MavenResolver(REPO, transport=transport({})).resolve(self.project)
        self.assertEqual(ctx.exception.kind, ResolutionErrorKind.PARSE_FAILED)


if __name__ == "__main__":
    unittest.main()
