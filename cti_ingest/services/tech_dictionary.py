"""Fixed technology dictionary used for tag detection."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Pattern, Tuple


@dataclass(frozen=True)
class TechEntry:
    key: str
    label: str
    aliases: Tuple[str, ...]
    category: str


TECH_DICTIONARY: Tuple[TechEntry, ...] = (
    TechEntry("java", "Java", ("java", "jdk", "jre", "openjdk"), "language"),
    TechEntry("spring", "Spring", ("spring", "spring framework", "springframework"), "framework"),
    TechEntry("spring_boot", "Spring Boot", ("spring boot", "spring-boot", "springboot"), "framework"),
    TechEntry("node_js", "Node.js", ("node.js", "nodejs", "node js"), "runtime"),
    TechEntry("npm", "npm", ("npm", "npmjs", "npm registry"), "package_manager"),
    TechEntry("react", "React", ("react", "reactjs", "react.js"), "framework"),
    TechEntry("react_native", "React Native", ("react native", "react-native", "reactnative"), "framework"),
    TechEntry("typescript", "TypeScript", ("typescript", "ts"), "language"),
    TechEntry("javascript", "JavaScript", ("javascript", "js", "ecmascript"), "language"),
    TechEntry("go", "Go", ("golang", "go"), "language"),
    TechEntry("python", "Python", ("python", "pypi", "pip"), "language"),
    TechEntry("postgresql", "PostgreSQL", ("postgresql", "postgres", "psql", "pg"), "tool"),
    TechEntry("redis", "Redis", ("redis",), "tool"),
    TechEntry("docker", "Docker", ("docker", "dockerfile", "docker-compose"), "tool"),
    TechEntry("kubernetes", "Kubernetes", ("kubernetes", "k8s", "kubectl"), "platform"),
    TechEntry("nginx", "Nginx", ("nginx",), "tool"),
    TechEntry("apache", "Apache", ("apache", "httpd", "apache2"), "tool"),
    TechEntry("maven", "Maven", ("maven", "mvn", "pom.xml"), "tool"),
    TechEntry("gradle", "Gradle", ("gradle", "build.gradle"), "tool"),
    TechEntry("webpack", "Webpack", ("webpack",), "tool"),
    TechEntry("next_js", "Next.js", ("next.js", "nextjs", "next js"), "framework"),
    TechEntry("express", "Express", ("express", "expressjs", "express.js"), "framework"),
    TechEntry("nestjs", "NestJS", ("nestjs", "nest.js", "nest"), "framework"),
    TechEntry("android", "Android", ("android",), "platform"),
    TechEntry("ios", "iOS", ("ios", "iphone", "ipad"), "platform"),
    TechEntry("log4j", "Log4j", ("log4j", "log4j2", "log4shell"), "tool"),
    TechEntry("jackson", "Jackson", ("jackson", "jackson-databind"), "tool"),
)


def boundary_pattern(terms: Iterable[str]) -> Pattern[str]:
    """Case-insensitive pattern matching any term not embedded in a longer alphanumeric token."""
    alternation = "|".join(re.escape(t) for t in sorted(set(terms), key=len, reverse=True))
    return re.compile(rf"(?<![0-9a-z])(?:{alternation})(?![0-9a-z])", re.IGNORECASE)


_TECH_PATTERNS: List[Tuple[TechEntry, Pattern[str]]] = [
    (entry, boundary_pattern(entry.aliases)) for entry in TECH_DICTIONARY
]


def detect_technologies(text: str) -> List[str]:
    """Return dictionary keys whose aliases occur in ``text``, in dictionary order."""
    return [entry.key for entry, pattern in _TECH_PATTERNS if pattern.search(text)]
