"""
Tests for bizcrawler/main.py: ID sources, profile selection and the CLI summary.
"""

import logging

import pytest

import bizcrawler.main as cli
from bizcrawler.config import EntityKind
from bizcrawler.detail import CrawlReport
from bizcrawler.storage import ids_file_path, save_detail


def parse(argv):
    return cli.build_parser().parse_args(argv)


# ---------------------------------------------------------------------------
# ID sources
# ---------------------------------------------------------------------------

class TestLoadIds:

    def test_ids_option(self):
        args = parse(["company", "--ids", "24566673, 04566673,,24566673"])
        assert cli.load_ids(args, EntityKind.COMPANY) == ["24566673", "04566673"]

    def test_file(self, tmp_path):
        path = tmp_path / "ids.txt"
        path.write_text("1\n2\n3\n4\n", encoding="utf-8")
        args = parse(["business", "--file", str(path), "--offset", "1", "--limit", "2"])
        assert cli.load_ids(args, EntityKind.BUSINESS) == ["2", "3"]

    def test_missing_file(self, tmp_path):
        args = parse(["company", "--file", str(tmp_path / "nope.txt")])
        with pytest.raises(FileNotFoundError):
            cli.load_ids(args, EntityKind.COMPANY)

    def test_from_data(self, tmp_path):
        path = ids_file_path(tmp_path, EntityKind.COMPANY, 114, 4)
        path.parent.mkdir(parents=True)
        path.write_text("24566673\n04566673\n", encoding="utf-8")
        args = parse(["company", "--from-data", "114", "4", "--data-dir", str(tmp_path)])
        assert cli.load_ids(args, EntityKind.COMPANY) == ["24566673", "04566673"]

    def test_from_data_bad_month(self, tmp_path):
        args = parse(["company", "--from-data", "114", "13", "--data-dir", str(tmp_path)])
        with pytest.raises(ValueError):
            cli.load_ids(args, EntityKind.COMPANY)

    def test_from_json(self, tmp_path):
        for eid in ["24566673", "04566673"]:
            save_detail(tmp_path, eid, EntityKind.COMPANY, {"a": "b"})
        args = parse(["company", "--from-json", "--data-dir", str(tmp_path)])
        assert cli.load_ids(args, EntityKind.COMPANY) == ["04566673", "24566673"]

    def test_source_is_required(self):
        with pytest.raises(SystemExit):
            parse(["company"])


class TestBuildConfig:

    def test_default(self, tmp_path):
        config = cli.build_config(parse(["company", "--ids", "1", "--data-dir", str(tmp_path)]))
        assert config.fast_mode is False
        assert config.data_dir == tmp_path

    def test_fast_and_overrides(self, tmp_path):
        config = cli.build_config(parse([
            "company", "--ids", "1", "--fast", "--max-retries", "5", "--proxy", "http://p:1", "--merge",
        ]))
        assert config.fast_mode is True
        assert config.max_retries == 5
        assert config.proxy == "http://p:1"
        assert config.merge_existing is True

    def test_safe(self):
        config = cli.build_config(parse(["company", "--ids", "1", "--safe"]))
        assert config.rate_limit >= 2.0
        assert config.max_retries == 3

    def test_safe_and_fast_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse(["company", "--ids", "1", "--safe", "--fast"])


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------

class StubCrawler:
    instances = []

    def __init__(self, config):
        self.config = config
        self.closed = False
        StubCrawler.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def crawl(self, ids, kind, *, on_result=None):
        report = CrawlReport()
        for eid in ids:
            report.processed += 1
            if eid == "11111111":
                report.not_found += 1
                status = "not_found"
            else:
                report.successful += 1
                report.succeeded.append(eid)
                status = "success"
            on_result(eid, status, report)
        return report


class TestMain:

    @pytest.fixture(autouse=True)
    def stub(self, monkeypatch):
        StubCrawler.instances = []
        monkeypatch.setattr(cli, "DetailCrawler", StubCrawler)

    def test_runs_and_prints_summary(self, capsys, tmp_path):
        rc = cli.main(["company", "--ids", "24566673,11111111", "--data-dir", str(tmp_path)])
        out = capsys.readouterr().out

        assert rc == 0
        assert "Processing company 24566673 (1/2)... SUCCESS" in out
        assert "Processing company 11111111 (2/2)... NOT FOUND" in out
        assert "Successful: 1" in out
        assert "Not found: 1" in out
        assert StubCrawler.instances[0].closed

    def test_progress_line(self, capsys):
        ids = ",".join(str(10000000 + i) for i in range(10))
        cli.main(["company", "--ids", ids])
        assert "Progress: 10/10 processed, 10 successful, 0 failed" in capsys.readouterr().out

    def test_missing_ids_file_returns_error(self, capsys, tmp_path):
        rc = cli.main(["company", "--from-data", "114", "4", "--data-dir", str(tmp_path)])
        assert rc == 1
        assert "Error:" in capsys.readouterr().err
        assert StubCrawler.instances == []

    def test_empty_id_list(self, capsys, tmp_path):
        path = tmp_path / "ids.txt"
        path.write_text("\n\n", encoding="utf-8")
        assert cli.main(["business", "--file", str(path)]) == 1


class TestConfigLogger:

    def _console_level(self):
        handlers = [h for h in cli.logger.handlers if not isinstance(h, logging.FileHandler)]
        return handlers[0].level

    def test_plain_run_only_warnings(self):
        cli.config_logger()
        assert self._console_level() == logging.WARNING

    def test_enable_logs(self, tmp_path):
        cli.config_logger(log_file=tmp_path / "crawl.log")
        assert self._console_level() == logging.INFO
        for h in cli.logger.handlers:
            h.close()

    def test_verbose(self):
        cli.config_logger(verbose=True)
        assert self._console_level() == logging.DEBUG
