"""Shared fixtures for bomgraph tests."""

import base64
import hashlib
from datetime import datetime, timezone

import pytest

from bomgraph.config import BuildOptions
from bomgraph.graph_builder import DependencyGraphBuilder

FIXED_TIMESTAMP = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


def sha512_base64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha512(data).digest()).decode()


def sha512_hex(data: bytes) -> str:
    return hashlib.sha512(data).hexdigest()


@pytest.fixture
def timestamp():
    return FIXED_TIMESTAMP


@pytest.fixture
def options():
    return BuildOptions(timestamp=FIXED_TIMESTAMP)


@pytest.fixture
def builder():
    return DependencyGraphBuilder("WebApp", "1.0.0", timestamp=FIXED_TIMESTAMP)


@pytest.fixture
def sample_records():
    """A small web project: two production packages, one test-only tool with its own dependency."""
    return [
        {
            "sourceKind": "manifest",
            "declaredName": "Newtonsoft.Json",
            "declaredVersionOrRange": "[13.0.1, )",
            "resolvedVersion": "13.0.1",
        },
        {
            "sourceKind": "manifest",
            "declaredName": "Serilog",
            "declaredVersionOrRange": "3.1.1",
        },
        {
            "sourceKind": "manifest",
            "declaredName": "xunit",
            "declaredVersionOrRange": "2.6.2",
            "privateAssets": "all",
        },
        {
            "sourceKind": "assets",
            "name": "Newtonsoft.Json",
            "version": "13.0.1",
            "hashes": [{"alg": "SHA512", "content": sha512_base64(b"newtonsoft")}],
        },
        {
            "sourceKind": "assets",
            "name": "Serilog",
            "version": "3.1.1",
            "dependencies": {"System.Diagnostics.DiagnosticSource": "[7.0.2, )"},
        },
        {
            "sourceKind": "assets",
            "name": "System.Diagnostics.DiagnosticSource",
            "version": "7.0.2",
        },
        {
            "sourceKind": "assets",
            "name": "xunit",
            "version": "2.6.2",
            "dependencies": {"xunit.core": "[2.6.2]"},
        },
        {
            "sourceKind": "assets",
            "name": "xunit.core",
            "version": "2.6.2",
        },
        {
            "sourceKind": "metadata",
            "name": "Newtonsoft.Json",
            "version": "13.0.1",
            "authors": "James Newton-King",
            "description": "Json.NET is a popular high-performance JSON framework for .NET",
            "licenseExpression": "MIT",
            "projectUrl": "https://www.newtonsoft.com/json",
            "copyright": "Copyright James Newton-King 2008",
        },
        {
            "sourceKind": "metadata",
            "name": "Serilog",
            "version": "3.1.1",
            "licenses": [{"id": "Apache-2.0", "url": "https://www.apache.org/licenses/LICENSE-2.0"}],
            "externalReferences": [{"type": "vcs", "url": "https://github.com/serilog/serilog"}],
        },
    ]
