from __future__ import annotations

import pytest

from autobackend.agent.models import AuthorizationRole, Endpoint, ScenarioGroup, SpecificationDocument
from autobackend.orchestrate.scenario import (
    ScenarioPlan,
    orchestrate_test_scenario,
    scenario_validator,
    unique_scenario_groups,
)


def _group(method: str, path: str, name: str, deps=()) -> dict:
    return {
        "endpoint": {"method": method, "path": path},
        "scenarios": [
            {
                "draft": f"Scenario {name}",
                "function_name": name,
                "dependencies": [
                    {"endpoint": {"method": m, "path": p}, "purpose": "prepare"} for m, p in deps
                ],
            }
        ],
    }


DOCUMENT = SpecificationDocument.model_validate(
    {
        "operations": [
            {"method": "post", "path": "/posts", "name": "create"},
            {"method": "get", "path": "/posts/{postId}", "name": "at"},
        ]
    }
)


def test_unique_scenario_groups_keeps_later_duplicate():
    first = ScenarioGroup.model_validate(_group("get", "/posts/{postId}", "test_first"))
    other = ScenarioGroup.model_validate(_group("post", "/posts", "test_other"))
    second = ScenarioGroup.model_validate(_group("GET", "/posts/{postId}/", "test_second"))

    merged = unique_scenario_groups([first, other, second])

    assert len(merged) == 2
    assert merged[0].scenarios[0].function_name == "test_second"
    assert merged[1] == other


def test_function_name_convention_is_enforced():
    with pytest.raises(ValueError):
        ScenarioGroup.model_validate(_group("post", "/posts", "createPost"))


def test_validator_discards_groups_for_other_endpoints():
    known = DOCUMENT.endpoints()
    validate = scenario_validator([known[0]], known)
    plan = ScenarioPlan.model_validate(
        {"groups": [_group("post", "/posts", "test_create"), _group("get", "/posts/{postId}", "test_at")]}
    )

    result = validate(plan)

    assert result.success
    assert [group.endpoint for group in result.data.groups] == [known[0]]


def test_validator_rejects_unknown_dependencies():
    known = DOCUMENT.endpoints()
    validate = scenario_validator(known, known)
    plan = ScenarioPlan.model_validate(
        {"groups": [_group("get", "/posts/{postId}", "test_at", deps=[("post", "/articles")])]}
    )

    result = validate(plan)

    assert not result.success
    assert result.errors[0].path == "$input.groups[0].scenarios[0].dependencies[0].endpoint"
    assert "POST /articles" in result.errors[-1].message
    assert "`post` | `/posts`" in result.errors[-1].message


@pytest.mark.asyncio
async def test_orchestrate_test_scenario_covers_every_endpoint(ctx, fake_model):
    fake_model.handlers["makeTestScenarios"] = {
        "groups": [
            _group("post", "/posts", "test_create_post"),
            _group("get", "/posts/{postId}", "test_read_post", deps=[("post", "/posts")]),
            _group("delete", "/unknown", "test_unknown"),
        ]
    }

    groups = await orchestrate_test_scenario(ctx, DOCUMENT, step=3)

    assert [group.endpoint for group in groups] == DOCUMENT.endpoints()
    assert len(fake_model.calls_for("makeTestScenarios")) == 1
    events = ctx.bus.of_type("testScenario")
    assert len(events) == 1
    assert events[0].step == 3
    assert {scenario.function_name for scenario in events[0].scenarios} == {"test_create_post", "test_read_post"}
    assert ctx.usage.test.total == 15


@pytest.mark.asyncio
async def test_orchestrate_test_scenario_retries_uncovered_endpoints(ctx, fake_model):
    fake_model.handlers["makeTestScenarios"] = [
        {"groups": [_group("post", "/posts", "test_create_post")]},
        {"groups": [_group("get", "/posts/{postId}", "test_read_post")]},
    ]

    groups = await orchestrate_test_scenario(ctx, DOCUMENT)

    assert {group.endpoint for group in groups} == set(DOCUMENT.endpoints())
    assert len(fake_model.calls_for("makeTestScenarios")) == 2
    assert Endpoint(method="get", path="/posts/{postId}") in {group.endpoint for group in groups}


AUTH_DOCUMENT = SpecificationDocument.model_validate(
    {
        "operations": [
            {
                "method": "post",
                "path": "/auth/member/join",
                "name": "join",
                "authorization_role": "member",
                "authorization_type": "join",
            },
            {
                "method": "post",
                "path": "/auth/member/login",
                "name": "login",
                "authorization_role": "member",
                "authorization_type": "login",
            },
            {"method": "post", "path": "/votes", "name": "create", "authorization_role": "member"},
            {"method": "get", "path": "/posts", "name": "index"},
        ]
    }
)


def test_document_collects_join_and_login_per_role():
    assert AUTH_DOCUMENT.authorizations() == [
        AuthorizationRole(
            name="member",
            join=Endpoint(method="post", path="/auth/member/join"),
            login=Endpoint(method="post", path="/auth/member/login"),
        )
    ]
    assert DOCUMENT.authorizations() == []


@pytest.mark.asyncio
async def test_scenario_request_lists_authentication_apis(ctx, fake_model):
    fake_model.handlers["makeTestScenarios"] = {
        "groups": [
            _group("post", "/auth/member/join", "test_join_member"),
            _group("post", "/auth/member/login", "test_login_member"),
            _group(
                "post",
                "/votes",
                "test_create_vote",
                deps=[("post", "/auth/member/join")],
            ),
            _group("get", "/posts", "test_index_posts"),
        ]
    }

    groups = await orchestrate_test_scenario(ctx, AUTH_DOCUMENT, authorizations=AUTH_DOCUMENT.authorizations())

    assert len(groups) == 4
    request = fake_model.calls_for("makeTestScenarios")[0]["messages"][-1].content
    section = request.split("## Related authentication APIs", 1)[1]
    votes = section.split("### 3. POST /votes", 1)[1].split("###", 1)[0]
    assert "Role: `member`" in votes
    assert "- join: `POST /auth/member/join`" in votes
    assert "- login: `POST /auth/member/login`" in votes
    posts = section.split("### 4. GET /posts", 1)[1]
    assert "- None" in posts
