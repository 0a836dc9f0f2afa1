from __future__ import annotations

import json

import pytest

from autobackend.compiler import CompilerSuite, DocumentCompiler, PythonSyntaxCompiler
from autobackend.compiler.base import CompileException, CompileFailure, CompileSuccess, Diagnostic
from autobackend.compiler.document import DOCUMENT_FILE, check_document
from autobackend.compiler.python import check_sources


def test_check_sources_reports_syntax_errors_with_location():
    diagnostics = check_sources(
        {
            "app/ok.py": "def ok() -> int:\n    return 1\n",
            "app/broken.py": "def broken(:\n    pass\n",
            "README.md": "not python (",
        }
    )

    assert len(diagnostics) == 1
    assert diagnostics[0].file == "app/broken.py"
    assert diagnostics[0].line == 1
    assert diagnostics[0].message.startswith("Syntax error")


def test_check_sources_flags_empty_modules():
    diagnostics = check_sources({"app/empty.py": "\n# nothing\n"})

    assert [d.code for d in diagnostics] == ["EmptyModule"]


def test_compile_failure_lists_files_once():
    failure = CompileFailure(
        diagnostics=[
            Diagnostic(file="b.py", message="x"),
            Diagnostic(file="a.py", message="y"),
            Diagnostic(file="b.py", message="z"),
        ]
    )

    assert failure.files() == ["b.py", "a.py"]
    assert Diagnostic(file="a.py", message="bad", line=3, column=7).describe() == "a.py:3:7 bad"


@pytest.mark.asyncio
async def test_python_compiler_results():
    compiler = PythonSyntaxCompiler()

    assert isinstance(await compiler.compile({"a.py": "x = 1\n"}), CompileSuccess)
    assert isinstance(await compiler.compile({"a.py": "x = (\n"}), CompileFailure)
    crashed = await compiler.compile({"a.py": b"x = 1"})
    assert isinstance(crashed, CompileException)
    assert crashed.error_type == "TypeError"


def _document(**overrides) -> dict:
    document = {
        "operations": [
            {
                "method": "get",
                "path": "/posts/{postId}",
                "parameters": [{"name": "postId", "schema": {"type": "string"}}],
                "response_body": {"type_name": "IPost"},
            }
        ],
        "components": {
            "schemas": {
                "IPost": {
                    "type": "object",
                    "properties": {"author": {"$ref": "#/components/schemas/IAuthor"}},
                },
                "IAuthor": {"type": "object"},
            }
        },
    }
    document.update(overrides)
    return document


def test_check_document_accepts_consistent_document():
    assert check_document({DOCUMENT_FILE: json.dumps(_document())}) == []


def test_check_document_reports_inconsistencies():
    document = _document()
    operation = dict(document["operations"][0])
    document["operations"] = [
        operation,
        operation,
        {"method": "post", "path": "/posts/{postId}/comments", "request_body": {"type_name": "IComment"}},
    ]
    del document["components"]["schemas"]["IAuthor"]

    codes = [d.code for d in check_document({DOCUMENT_FILE: json.dumps(document)})]

    assert codes.count("DuplicateEndpoint") == 1
    assert "UndeclaredPathParameter" in codes
    assert "MissingSchema" in codes
    assert "UnresolvedReference" in codes


def test_check_document_requires_role_on_join_and_login():
    document = _document()
    document["operations"] = [
        *document["operations"],
        {"method": "post", "path": "/auth/member/join", "authorization_type": "join"},
        {
            "method": "post",
            "path": "/auth/member/login",
            "authorization_type": "login",
            "authorization_role": "member",
        },
    ]

    diagnostics = check_document({DOCUMENT_FILE: json.dumps(document)})

    assert [d.code for d in diagnostics] == ["MissingAuthorizationRole"]
    assert "POST /auth/member/join" in diagnostics[0].message


def test_check_document_reports_invalid_json_and_shape():
    assert check_document({DOCUMENT_FILE: "{"})[0].code == "JsonDecodeError"
    shape = check_document({DOCUMENT_FILE: json.dumps({"operations": [{"method": "fetch", "path": "/"}]})})
    assert shape[0].code == "SchemaViolation"
    assert check_document({})[0].code == "MissingDocument"


@pytest.mark.asyncio
async def test_document_compiler_and_default_suite():
    suite = CompilerSuite()

    assert isinstance(suite.interface, DocumentCompiler)
    assert isinstance(suite.schema, PythonSyntaxCompiler)
    result = await suite.interface.compile({DOCUMENT_FILE: json.dumps(_document())})
    assert isinstance(result, CompileSuccess)
