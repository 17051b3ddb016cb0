from __future__ import annotations

import importlib.util
import json
import unittest
import zipfile
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

import deepfetch
from deepfetch import (
    Phase,
    ResourceRecord,
    RootFetchFailure,
    SessionState,
    WarcArchiver,
    default_archive_name,
    export_record,
    format_file_size,
    parse_args,
    safe_archive_name,
    save_to_directory,
    settings_from_args,
    write_manifest,
    write_zip,
)

RECORDS = [
    ResourceRecord(filename="index.html", content="<html></html>", kind="html",
                   source_url="https://x.test/", content_type="text/html"),
    ResourceRecord(filename="img/logo.png", content=b"\x89PNG", kind="image",
                   source_url="https://x.test/img/logo.png", content_type="image/png"),
    ResourceRecord(filename="sources/src/app.js", content="console.log(1)", kind="source"),
]


class TestZipAndDirectory(unittest.TestCase):
    def test_write_zip_has_one_entry_per_record(self) -> None:
        with TemporaryDirectory() as tmp:
            path = write_zip(RECORDS, Path(tmp) / "out" / "site.zip")
            with zipfile.ZipFile(path) as zf:
                self.assertEqual(
                    zf.namelist(), ["index.html", "img/logo.png", "sources/src/app.js"]
                )
                self.assertEqual(zf.read("img/logo.png"), b"\x89PNG")
                self.assertEqual(zf.read("sources/src/app.js").decode(), "console.log(1)")

    def test_archive_names_cannot_escape(self) -> None:
        self.assertEqual(safe_archive_name("../../etc/passwd"), "etc/passwd")
        self.assertEqual(safe_archive_name("/abs/./x.js"), "abs/x.js")
        self.assertEqual(safe_archive_name("a\\b.js"), "a/b.js")
        self.assertEqual(safe_archive_name(".."), "file")

    def test_save_to_directory(self) -> None:
        with TemporaryDirectory() as tmp:
            written = save_to_directory(RECORDS, tmp)
            self.assertEqual(len(written), 3)
            self.assertEqual((Path(tmp) / "img" / "logo.png").read_bytes(), b"\x89PNG")
            self.assertEqual(
                (Path(tmp) / "sources" / "src" / "app.js").read_text(encoding="utf-8"),
                "console.log(1)",
            )

    def test_export_record_into_directory(self) -> None:
        with TemporaryDirectory() as tmp:
            path = export_record(RECORDS[2], tmp)
            self.assertEqual(path.name, "app.js")
            self.assertEqual(path.read_text(encoding="utf-8"), "console.log(1)")

    def test_manifest_lists_every_file(self) -> None:
        state = SessionState(root_url="https://x.test/", phase=Phase.COMPLETE)
        for rec in RECORDS:
            state.catalog.put(rec)
        with TemporaryDirectory() as tmp:
            path = write_manifest(state, Path(tmp) / "meta" / "manifest.json")
            data = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(data["site"], "https://x.test/")
        self.assertEqual(data["phase"], "complete")
        self.assertEqual(data["stats"]["total_files"], 3)
        self.assertEqual(
            [f["filename"] for f in data["files"]],
            ["index.html", "img/logo.png", "sources/src/app.js"],
        )
        self.assertTrue(data["created_utc"].endswith("Z"))

    def test_default_archive_name(self) -> None:
        self.assertEqual(default_archive_name("https://x.test:8080/a"), "x.test-resources.zip")

    def test_format_file_size(self) -> None:
        self.assertEqual(format_file_size(0), "0 B")
        self.assertEqual(format_file_size(512), "512 B")
        self.assertEqual(format_file_size(1536), "1.5 KB")
        self.assertEqual(format_file_size(1024 * 1024), "1 MB")


@unittest.skipUnless(importlib.util.find_spec("warcio"), "warcio not installed")
class TestWarcArchiver(unittest.TestCase):
    def test_one_resource_record_per_catalog_record(self) -> None:
        from warcio.archiveiterator import ArchiveIterator

        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "site.warc.gz"
            archiver = WarcArchiver(path)
            try:
                self.assertEqual(archiver.write_records(RECORDS), 3)
            finally:
                archiver.close()
            with open(path, "rb") as fh:
                uris = [
                    rec.rec_headers.get_header("WARC-Target-URI")
                    for rec in ArchiveIterator(fh)
                    if rec.rec_type == "resource"
                ]
        self.assertEqual(
            uris,
            [
                "https://x.test/",
                "https://x.test/img/logo.png",
                "urn:deepfetch:sources/src/app.js",
            ],
        )


class TestConfigAndCli(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = settings_from_args(parse_args(["https://x.test/"]))
        self.assertEqual(settings.workers, 8)
        self.assertEqual(settings.relay_mode, "envelope")
        self.assertTrue(settings.source_maps)
        self.assertTrue(settings.dynamic)
        self.assertFalse(settings.guess_source_maps)

    def test_flags(self) -> None:
        args = parse_args(
            [
                "https://x.test/",
                "--no-relay",
                "--no-source-maps",
                "--no-dynamic",
                "--guess-source-maps",
                "--workers",
                "0",
                "-o",
                "out.zip",
            ]
        )
        settings = settings_from_args(args)
        self.assertIsNone(settings.relay_url)
        self.assertFalse(settings.source_maps)
        self.assertFalse(settings.dynamic)
        self.assertTrue(settings.guess_source_maps)
        self.assertEqual(settings.workers, 1)
        self.assertEqual(settings.zip_path, "out.zip")

    def test_grouped_toml_config_becomes_defaults(self) -> None:
        with TemporaryDirectory() as tmp:
            cfg = Path(tmp) / "deepfetch.toml"
            cfg.write_text(
                '[network]\nworkers = 3\n\n[relay]\nrelay_url = "https://relay.test/"\n'
                'relay_mode = "raw"\n',
                encoding="utf-8",
            )
            args = parse_args(["--config", str(cfg), "https://x.test/"])
        self.assertEqual(args.workers, 3)
        self.assertEqual(args.relay_url, "https://relay.test/")
        self.assertEqual(args.relay_mode, "raw")

    def test_command_line_overrides_config(self) -> None:
        with TemporaryDirectory() as tmp:
            cfg = Path(tmp) / "deepfetch.yaml"
            cfg.write_text("discovery:\n  guess_source_maps: true\nworkers: 2\n", encoding="utf-8")
            args = parse_args(["--config", str(cfg), "--workers", "5", "https://x.test/"])
        self.assertEqual(args.workers, 5)
        self.assertTrue(args.guess_source_maps)

    def test_positive_switches_map_onto_negated_flags(self) -> None:
        with TemporaryDirectory() as tmp:
            cfg = Path(tmp) / "deepfetch.toml"
            cfg.write_text(
                "[discovery]\nsource_maps = false\n\n[output]\nwarc-gzip = false\n",
                encoding="utf-8",
            )
            settings = settings_from_args(parse_args(["--config", str(cfg), "https://x.test/"]))
        self.assertFalse(settings.source_maps)
        self.assertFalse(settings.warc_gzip)
        self.assertTrue(settings.dynamic)

    def test_unknown_config_keys_are_rejected(self) -> None:
        with TemporaryDirectory() as tmp:
            cfg = Path(tmp) / "deepfetch.yaml"
            cfg.write_text("network:\n  workerz: 3\nurl: https://y.test/\n", encoding="utf-8")
            with self.assertRaises(RuntimeError) as ctx:
                parse_args(["--config", str(cfg), "https://x.test/"])
        self.assertIn("workerz", str(ctx.exception))
        self.assertIn("url", str(ctx.exception))

    def test_unsupported_config_format(self) -> None:
        with self.assertRaises(RuntimeError):
            parse_args(["--config", "settings.ini", "https://x.test/"])

    def test_main_rejects_invalid_url(self) -> None:
        with mock.patch("builtins.print"):
            with self.assertRaises(SystemExit) as ctx:
                deepfetch.main(["ftp://x.test/"])
        self.assertEqual(ctx.exception.code, 1)

    def test_main_exits_on_root_failure(self) -> None:
        with mock.patch.object(
            deepfetch.Downloader, "start", side_effect=RootFetchFailure("boom")
        ), mock.patch("builtins.print"):
            with self.assertRaises(SystemExit) as ctx:
                deepfetch.main(["https://x.test/"])
        self.assertEqual(ctx.exception.code, 1)

    def test_main_writes_archive(self) -> None:
        state = SessionState(root_url="https://x.test/", phase=Phase.COMPLETE)
        for rec in RECORDS:
            state.catalog.put(rec)
        with TemporaryDirectory() as tmp:
            out = Path(tmp) / "site.zip"
            files = Path(tmp) / "files"
            with mock.patch.object(deepfetch.Downloader, "start", return_value=state), mock.patch(
                "builtins.print"
            ):
                deepfetch.main(["https://x.test/", "-o", str(out), "--dir", str(files)])
            with zipfile.ZipFile(out) as zf:
                self.assertEqual(len(zf.namelist()), 3)
            self.assertTrue((files / "index.html").is_file())


if __name__ == "__main__":
    unittest.main()
