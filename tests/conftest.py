import copy

import pytest

# Import logging configuration
from conftest_logging import configure_test_logging  # noqa: F401

from apibridge import APIBridge
from apibridge.core.config import MCPOptions
from apibridge.core.models import (
    Endpoint,
    MediaType,
    MiddlewareContext,
    Parameter,
    RequestBody,
    RequestInfo,
)

BASE_URL = "http://api.test"

PETSTORE = {
    "openapi": "3.0.3",
    "info": {"title": "Petstore", "version": "1.0.0"},
    "servers": [{"url": BASE_URL}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "summary": "List all pets",
                "tags": ["pets"],
                "parameters": [
                    {
                        "name": "limit",
                        "in": "query",
                        "required": False,
                        "description": "How many items to return",
                        "schema": {"type": "integer", "maximum": 100},
                    }
                ],
                "responses": {
                    "200": {
                        "description": "A list of pets",
                        "content": {
                            "application/json": {
                                "schema": {
                                    "type": "array",
                                    "items": {"$ref": "#/components/schemas/Pet"},
                                }
                            }
                        },
                    }
                },
            },
            "post": {
                "operationId": "createPet",
                "requestBody": {
                    "required": True,
                    "description": "Pet to add",
                    "content": {
                        "application/json": {
                            "schema": {"$ref": "#/components/schemas/NewPet"}
                        }
                    },
                },
                "responses": {"201": {"description": "Created"}},
            },
        },
        "/pets/{petId}": {
            "parameters": [
                {
                    "name": "petId",
                    "in": "path",
                    "required": True,
                    "schema": {"type": "string"},
                }
            ],
            "get": {
                "operationId": "showPetById",
                "description": "Info for a specific pet",
                "parameters": [
                    {
                        "name": "X-Request-Id",
                        "in": "header",
                        "schema": {"type": "string"},
                    }
                ],
                "responses": {
                    "200": {
                        "description": "Expected response",
                        "content": {
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/Pet"}
                            }
                        },
                    }
                },
            },
            "delete": {
                "operationId": "deletePet",
                "deprecated": True,
                "responses": {"204": {"description": "Deleted"}},
            },
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "required": ["id", "name"],
                "properties": {
                    "id": {"type": "integer", "format": "int64"},
                    "name": {"type": "string"},
                    "tag": {"type": "string"},
                },
            },
            "NewPet": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "tag": {"type": "string"},
                },
            },
        }
    },
}


@pytest.fixture
def petstore_document():
    """A fresh copy of the sample OpenAPI document."""
    return copy.deepcopy(PETSTORE)


@pytest.fixture
def user_endpoint():
    """GET /users/{id} with a query parameter."""
    return Endpoint(
        method="GET",
        path="/users/{id}",
        parameters=[
            Parameter(name="id", location="path", type="integer"),
            Parameter(name="expand", location="query", type="boolean"),
        ],
    )


@pytest.fixture
def create_user_endpoint():
    return Endpoint(
        method="POST",
        path="/users",
        summary="Create a user",
        request_body=RequestBody(
            content={
                "application/json": MediaType(
                    schema={
                        "type": "object",
                        "properties": {"name": {"type": "string"}},
                        "required": ["name"],
                    }
                )
            },
            required=True,
        ),
    )


@pytest.fixture
def bridge(user_endpoint, create_user_endpoint):
    """A bridge with two manually defined endpoints."""
    instance = APIBridge({"name": "test-api", "version": "2.0.0"})
    instance.define_endpoint(user_endpoint)
    instance.define_endpoint(create_user_endpoint)
    return instance


@pytest.fixture
def mcp_options():
    return MCPOptions(transport="stdio", base_url=BASE_URL)


@pytest.fixture
def make_context(user_endpoint):
    """Factory for middleware contexts bound to GET /users/{id}."""

    def factory(**overrides):
        request = overrides.pop(
            "request",
            RequestInfo(method="GET", path="/users/{id}", params={"id": 1}),
        )
        return MiddlewareContext(endpoint=user_endpoint, request=request, **overrides)

    return factory
