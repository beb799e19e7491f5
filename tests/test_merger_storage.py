"""Tests for the storage merger."""

from __future__ import annotations

from stackfold.mergers.storage import (
    StorageMerger,
    bucket_name,
    extract_bucket_names,
    migration_script,
    setup_script,
)
from stackfold.models import MergeOptions, StackType


class TestBucketName:
    def test_normalized(self) -> None:
        assert bucket_name("Assets_Prod") == "assets-prod"

    def test_short_names_padded(self) -> None:
        assert bucket_name("ab") == "ab-bucket"

    def test_long_names_cut(self) -> None:
        name = bucket_name("a" * 62 + "-b")
        assert len(name) <= 63
        assert not name.endswith("-")

    def test_empty(self) -> None:
        assert bucket_name("***") == ""

    def test_distinct_in_input_order(self, make_result) -> None:
        results = [
            make_result("aws_s3_bucket", "zeta"),
            make_result("google_storage_bucket", "alpha"),
            make_result("aws_s3_bucket", "Zeta"),
        ]
        assert extract_bucket_names(results) == ["zeta", "alpha"]


class TestScripts:
    def test_setup_script_is_idempotent(self) -> None:
        script = setup_script(["logs", "assets"])
        assert "mc mb --ignore-existing myminio/logs" in script
        assert "mc mb --ignore-existing myminio/assets" in script
        assert script.startswith("#!/bin/sh")

    def test_migration_script_groups_by_provider(self, make_result) -> None:
        script = migration_script(
            [make_result("google_storage_bucket", "media"), make_result("aws_s3_bucket", "logs")]
        )
        assert "rclone sync aws:logs minio:logs" in script
        assert "rclone sync gcs:media minio:media" in script
        assert script.index("# AWS") < script.index("# GCP")


class TestStorageMerger:
    def test_can_merge(self, make_result) -> None:
        merger = StorageMerger()
        assert merger.stack_type is StackType.STORAGE
        assert merger.can_merge([make_result("azurerm_storage_container", "c")])
        assert not merger.can_merge([make_result("aws_ebs_volume", "v")])

    def test_one_minio_many_buckets(self, make_result) -> None:
        results = [make_result("aws_s3_bucket", "logs"), make_result("google_storage_bucket", "media")]
        stack = StorageMerger().merge(results, MergeOptions())

        assert [s.name for s in stack.services] == ["minio", "minio-init"]
        assert stack.metadata["bucket_logs"] == "logs"
        assert stack.metadata["total_buckets"] == "2"
        assert "nginx/minio-proxy.conf" in stack.configs
        steps = [v for k, v in sorted(stack.metadata.items()) if k.startswith("manual_step_")]
        assert any(step.startswith("AWS S3:") for step in steps)
        assert any(step.startswith("GCS:") for step in steps)
        assert not any(step.startswith("Azure Blob:") for step in steps)

    def test_file_share_warning(self, make_result) -> None:
        stack = StorageMerger().merge(
            [make_result("aws_efs_file_system", "shared")], MergeOptions(include_support_services=False)
        )
        assert "without POSIX semantics" in stack.metadata["warning_01"]
        assert "nginx/minio-proxy.conf" not in stack.configs

    def test_no_init_service_without_buckets(self, make_result) -> None:
        stack = StorageMerger().merge([make_result("aws_s3_bucket", "!!!")], MergeOptions())
        assert [s.name for s in stack.services] == ["minio"]
        assert stack.metadata["total_buckets"] == "0"

    def test_name_prefix_reaches_service_hostnames(self, make_result) -> None:
        stack = StorageMerger().merge([make_result("aws_s3_bucket", "logs")], MergeOptions(name_prefix="t1"))

        assert [s.name for s in stack.services] == ["t1-minio", "t1-minio-init"]
        init = stack.get_service("t1-minio-init")
        assert init.depends_on == ["t1-minio"]
        assert init.environment["MC_HOST_myminio"].endswith("@t1-minio:9000")
        proxy = stack.configs["nginx/minio-proxy.conf"]
        assert "server t1-minio:9000;" in proxy
        assert "server t1-minio:9001;" in proxy
