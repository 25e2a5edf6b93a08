"""脚本流水线测试"""

from pathlib import Path

import pytest

from assetpipe.core.cache import CacheStore
from assetpipe.core.exceptions import TransformError
from assetpipe.services.script_service import (
    ANALYSIS_FILE,
    EsbuildBundler,
    ScriptPipeline,
    analyze_metafile,
)


def _pipeline(project: Path, executor) -> ScriptPipeline:
    bundler = EsbuildBundler("npx esbuild", executor=executor, cwd=str(project))
    return ScriptPipeline(
        CacheStore(project / ".build-cache"),
        output_root=project / "build",
        js_dir=project / "build" / "assets" / "js",
        bundler=bundler,
        dependency_manifest=project / "package.json",
        cwd=project,
    )


class TestEsbuildBundler:
    def test_command(self) -> None:
        cmd = EsbuildBundler(externals=["react"]).build_command(
            ["src/a.js"], Path("out"), Path("meta.json"),
        )
        assert cmd[:3] == ["npx", "esbuild", "src/a.js"]
        for flag in ("--bundle", "--splitting", "--format=esm", "--outdir=out",
                     "--metafile=meta.json", "--target=es2020", "--minify",
                     "--external:react", "--loader:.js=jsx", "--loader:.svg=dataurl"):
            assert flag in cmd

    def test_no_minify(self) -> None:
        cmd = EsbuildBundler(minify=False, target=[]).build_command(["a.js"], Path("o"), Path("m"))
        assert "--minify" not in cmd
        assert not any(a.startswith("--target") for a in cmd)


class TestAnalyzeMetafile:
    def test_sizes_and_shares(self) -> None:
        text = analyze_metafile({"outputs": {
            "build/assets/js/a.js": {
                "bytes": 2048,
                "inputs": {"src/a.js": {"bytesInOutput": 1536}, "src/b.js": {"bytesInOutput": 512}},
            },
            "build/assets/js/chunk.js": {"bytes": 100, "inputs": {}},
        }})
        lines = text.splitlines()
        assert lines[0] == "  build/assets/js/a.js  2.0kb  100.0%"
        assert lines[1] == "   ├ src/a.js  1.5kb  75.0%"
        assert lines[2] == "   └ src/b.js  512b  25.0%"
        assert "build/assets/js/chunk.js  100b" in text

    def test_empty(self) -> None:
        assert analyze_metafile({}) == "(no outputs)\n"


class TestScriptPipeline:
    def test_bundle_outputs(self, project: Path, fake_executor) -> None:
        record = _pipeline(project, fake_executor).run(["src/hydrate.js"])
        assert record.outputs == ["assets/js/chunk-SHARED.js", "assets/js/hydrate.js"]
        assert (project / "build" / "assets" / "js" / "hydrate.js").is_file()
        assert (project / "build" / ANALYSIS_FILE).is_file()
        assert str((project / "src" / "hydrate.js").resolve()) in record.inputs
        assert record.package_time is not None

    def test_cache_hit(self, project: Path, fake_executor) -> None:
        first = _pipeline(project, fake_executor).run(["src/hydrate.js"])
        second = _pipeline(project, fake_executor).run(["src/hydrate.js"])
        assert second.outputs == first.outputs
        assert fake_executor.count("esbuild") == 1

    def test_package_json_invalidates(self, project: Path, fake_executor, touch) -> None:
        pipeline = _pipeline(project, fake_executor)
        pipeline.run(["src/hydrate.js"])
        touch(project / "package.json")
        pipeline.run(["src/hydrate.js"])
        assert fake_executor.count("esbuild") == 2

    def test_source_invalidates(self, project: Path, fake_executor, touch) -> None:
        pipeline = _pipeline(project, fake_executor)
        pipeline.run(["src/hydrate.js"])
        touch(project / "src" / "hydrate.js")
        pipeline.run(["src/hydrate.js"])
        assert fake_executor.count("esbuild") == 2

    def test_missing_analysis_invalidates(self, project: Path, fake_executor) -> None:
        pipeline = _pipeline(project, fake_executor)
        pipeline.run(["src/hydrate.js"])
        (project / "build" / ANALYSIS_FILE).unlink()
        pipeline.run(["src/hydrate.js"])
        assert fake_executor.count("esbuild") == 2

    def test_missing_entry(self, project: Path, fake_executor) -> None:
        with pytest.raises(TransformError) as exc_info:
            _pipeline(project, fake_executor).run(["src/missing.js"])
        assert exc_info.value.pipeline == "script"
        assert exc_info.value.source == "src/missing.js"
        assert fake_executor.calls == []

    def test_bundler_failure(self, project: Path, fake_executor) -> None:
        fake_executor.fail_with["esbuild"] = "Could not resolve \"lodash\""
        with pytest.raises(TransformError, match="lodash"):
            _pipeline(project, fake_executor).run(["src/hydrate.js"])

    def test_no_entries(self, project: Path, fake_executor) -> None:
        record = _pipeline(project, fake_executor).run([])
        assert record.outputs == []
        assert fake_executor.calls == []
