"""Tests for the auth merger."""

from __future__ import annotations

import json

from stackfold.mergers.auth import (
    AuthMerger,
    build_realm,
    default_realm_name,
    password_policy,
)
from stackfold.models import MappingResult, MergeOptions, StackType


class TestPasswordPolicy:
    def test_full_policy(self) -> None:
        policy = {
            "minimum_length": 12,
            "require_lowercase": True,
            "require_uppercase": False,
            "require_numbers": True,
            "require_symbols": True,
        }
        assert password_policy(policy) == "length(12) and lowerCase(1) and digits(1) and specialChars(1)"

    def test_ignores_non_numeric_length(self) -> None:
        assert password_policy({"minimum_length": True, "require_numbers": True}) == "digits(1)"

    def test_empty(self) -> None:
        assert password_policy({}) == ""


class TestBuildRealm:
    def test_cognito_clients_and_policy(self) -> None:
        result = MappingResult(
            "aws_cognito_user_pool",
            "customers",
            configs={
                "user_pool.json": json.dumps({"password_policy": {"minimum_length": 8}}),
                "app_clients.json": json.dumps(
                    [{"client_id": "Web_App", "callback_urls": ["https://app.example.com/cb"]}]
                ),
            },
        )
        warnings: list[str] = []
        realm = build_realm(result, "customers", warnings)

        assert realm["passwordPolicy"] == "length(8)"
        assert realm["attributes"]["source"] == "aws_cognito"
        [client] = realm["clients"]
        assert client["clientId"] == "web-app"
        assert client["redirectUris"] == ["https://app.example.com/cb"]
        assert warnings == []

    def test_identity_platform_domains(self) -> None:
        result = MappingResult(
            "google_identity_platform_config",
            "idp",
            configs={"identity_platform.json": json.dumps({"authorized_domains": ["app.example.com"]})},
        )
        realm = build_realm(result, "idp", [])
        [client] = realm["clients"]
        assert client["clientId"] == "app-example-com-client"
        assert client["directAccessGrantsEnabled"] is False

    def test_adb2c_display_name(self) -> None:
        result = MappingResult(
            "azurerm_aadb2c_directory",
            "b2c",
            configs={
                "adb2c.json": json.dumps({"domain_name": "contoso.onmicrosoft.com"}),
                "app_registrations.json": json.dumps(
                    [{"application_id": "abc-123", "display_name": "Portal", "is_public_client": True}]
                ),
            },
        )
        realm = build_realm(result, "b2c", [])
        assert realm["displayName"] == "Azure AD B2C: contoso.onmicrosoft.com"
        assert realm["clients"][0]["clientId"] == "abc-123"
        assert realm["clients"][0]["publicClient"] is True

    def test_default_client_when_none_found(self) -> None:
        realm = build_realm(MappingResult("aws_cognito_user_pool", "pool"), "pool", [])
        [client] = realm["clients"]
        assert client["clientId"] == "pool-app"
        assert client["redirectUris"] == ["http://localhost:*", "https://localhost:*"]

    def test_unparseable_config_warns(self) -> None:
        result = MappingResult("aws_cognito_user_pool", "pool", configs={"app_clients.json": "{nope"})
        warnings: list[str] = []
        realm = build_realm(result, "pool", warnings)
        assert len(warnings) == 1
        assert "app_clients.json" in warnings[0]
        assert realm["clients"][0]["clientId"] == "pool-app"


class TestDefaultRealmName:
    def test_from_resource_name(self) -> None:
        assert default_realm_name(MappingResult("aws_cognito_user_pool", "My Pool")) == "my-pool"

    def test_fallback_per_provider(self) -> None:
        assert default_realm_name(MappingResult("aws_cognito_user_pool", "")) == "cognito-migration"
        assert default_realm_name(MappingResult("azuread_application", "")) == "adb2c-migration"
        assert default_realm_name(MappingResult("custom_idp", "")) == "auth-migration"


class TestAuthMerger:
    def test_can_merge(self, make_result) -> None:
        merger = AuthMerger()
        assert merger.stack_type is StackType.AUTH
        assert merger.can_merge([make_result("aws_cognito_user_pool", "p")])
        assert not merger.can_merge([make_result("aws_iam_role", "r")])

    def test_one_keycloak_many_realms(self, make_result) -> None:
        results = [
            make_result("aws_cognito_user_pool", "customers"),
            make_result("google_identity_platform_config", "customers"),
        ]
        stack = AuthMerger().merge(results, MergeOptions())

        assert [s.name for s in stack.services] == ["keycloak"]
        assert stack.depends_on == [StackType.DATABASE]
        realms = json.loads(stack.configs["keycloak/realms/import-realms.json"])
        assert [r["realm"] for r in realms] == ["customers", "customers-1"]
        assert stack.metadata["realms"] == "customers,customers-1"
        assert "keycloak/migrate-users.sh" in stack.scripts

    def test_database_host_follows_prefix(self, make_result) -> None:
        stack = AuthMerger().merge(
            [make_result("aws_cognito_user_pool", "p")], MergeOptions(name_prefix="acme")
        )
        assert [s.name for s in stack.services] == ["acme-keycloak"]
        keycloak = stack.get_service("acme-keycloak")
        assert keycloak.environment["KC_DB_URL_HOST"] == "${KC_DB_HOST:-acme-postgres}"

    def test_database_settings_follow_engine(self, make_result) -> None:
        stack = AuthMerger().merge(
            [make_result("aws_cognito_user_pool", "p")], MergeOptions(database_engine="mysql")
        )
        env = stack.get_service("keycloak").environment
        assert env["KC_DB"] == "mysql"
        assert env["KC_DB_URL_PORT"] == "${KC_DB_PORT:-3306}"
        assert env["KC_DB_URL_HOST"] == "${KC_DB_HOST:-mysql}"
        assert stack.metadata["manual_step_01"] == "Create the 'keycloak' database and user on the mysql server"

    def test_source_manual_steps_are_kept(self, make_result) -> None:
        result = make_result("aws_cognito_user_pool", "p", manual_steps=["Re-verify SES sender identity"])
        stack = AuthMerger().merge([result], MergeOptions())
        steps = [v for k, v in sorted(stack.metadata.items()) if k.startswith("manual_step_")]
        assert steps[-1] == "Re-verify SES sender identity"
