from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import time
import unittest
from pathlib import Path
from typing import Dict, Tuple


def _random_bytes(size: int) -> bytes:
    return os.urandom(size)


def _build_fixture_tree(root: Path, *, include_symlink: bool = True) -> Dict[str, Tuple[str, bytes]]:
    files: Dict[str, Tuple[str, bytes]] = {}
    (root / "docs").mkdir()
    (root / "docs" / "notes").mkdir()
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    os.chmod(root / "docs" / "readme.txt", 0o644)
    files["docs/readme.txt"] = ("file", content)

    bin_data = _random_bytes(2048)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    os.chmod(root / "docs" / "notes" / "binary.bin", 0o600)
    files["docs/notes/binary.bin"] = ("file", bin_data)

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = ("file", b"")

    # Directory metadata reference
    os.chmod(root / "docs" / "notes", 0o750)
    when = int(time.time()) - 86400
    os.utime(root / "docs" / "notes", (when - 60, when))

    if include_symlink and hasattr(os, "symlink"):
        target = "notes"
        link_path = root / "docs" / "ln_notes"
        try:
            os.symlink(target, link_path)
            files["docs/ln_notes"] = ("symlink", target.encode("utf-8"))
        except (OSError, NotImplementedError):
            pass

    return files


def _compare_trees(src: Path, dst: Path):
    for root_src, dirs_src, files_src in os.walk(src):
        rel = os.path.relpath(root_src, src)
        root_dst = os.path.join(dst, rel) if rel != "." else dst
        assert os.path.isdir(root_dst), f"Missing directory: {root_dst}"

        dirs_src.sort()
        files_src.sort()
        dirs_dst = sorted(
            d for d in os.listdir(root_dst) if os.path.isdir(os.path.join(root_dst, d)) and not os.path.islink(os.path.join(root_dst, d))
        )
        expected_dirs = sorted([d for d in dirs_src if not os.path.islink(os.path.join(root_src, d))])
        assert dirs_dst == expected_dirs, f"Directory mismatch under {root_src}: {dirs_dst} != {expected_dirs}"

        # os.walk lists symlinked directories under dirs, not files
        links_src = sorted(d for d in dirs_src if os.path.islink(os.path.join(root_src, d)))
        for name in files_src + links_src:
            src_path = Path(root_src) / name
            dst_path = Path(root_dst) / name
            if os.path.islink(src_path):
                if not os.path.islink(dst_path):
                    raise AssertionError(f"Expected symlink at {dst_path}")
                assert os.readlink(dst_path) == os.readlink(src_path)
            else:
                with open(src_path, "rb") as sf, open(dst_path, "rb") as df:
                    assert sf.read() == df.read(), f"File contents differ: {dst_path}"
                assert (os.stat(src_path).st_mode & 0o777) == (os.stat(dst_path).st_mode & 0o777), f"Mode differs: {dst_path}"


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None):
        cmd = [sys.executable, "-m", "tarstream.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def test_create_list_extract_roundtrip(self):
        tmp_src = tempfile.TemporaryDirectory()
        tmp_workspace = tempfile.TemporaryDirectory()
        self.addCleanup(tmp_src.cleanup)
        self.addCleanup(tmp_workspace.cleanup)

        src_root = Path(tmp_src.name)
        workspace = Path(tmp_workspace.name)
        files = _build_fixture_tree(src_root)

        archive = workspace / "archive.tar"
        create_proc = self.run_cli(["create", str(archive), str(src_root / "docs")])
        self.assertIn("Done:", create_proc.stdout)
        self.assertEqual(archive.stat().st_size % 512, 0)

        verify_proc = self.run_cli(["verify", str(archive)])
        self.assertIn("OK", verify_proc.stdout)

        list_proc = self.run_cli(["list", str(archive)])
        lines = list_proc.stdout.splitlines()
        self.assertIn("directory\t0\tdocs/", lines)
        self.assertIn("directory\t0\tdocs/notes/", lines)
        self.assertIn(f"file\t{20 * 12}\tdocs/readme.txt", lines)
        self.assertIn("file\t2048\tdocs/notes/binary.bin", lines)
        self.assertIn("file\t0\tdocs/notes/empty.txt", lines)
        if "docs/ln_notes" in files:
            self.assertIn("symlink\t-> notes\tdocs/ln_notes", lines)

        extract_dir = workspace / "extract"
        extract_dir.mkdir()
        self.run_cli(["extract", str(archive), "--outdir", str(extract_dir)])
        _compare_trees(src_root / "docs", extract_dir / "docs")
        notes = extract_dir / "docs" / "notes"
        self.assertEqual(notes.stat().st_mode & 0o777, 0o750)
        self.assertEqual(int(notes.stat().st_mtime), int((src_root / "docs" / "notes").stat().st_mtime))

    def test_create_from_relative_dot_paths(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _build_fixture_tree(root, include_symlink=False)
            docs = root / "docs"

            for arg, cwd in ((".", docs), ("..", docs / "notes")):
                with self.subTest(arg=arg):
                    archive = root / f"rel{len(arg)}.tar"
                    self.run_cli(["create", str(archive), arg, "--quiet"], cwd=cwd)
                    lines = self.run_cli(["list", str(archive)]).stdout.splitlines()
                    self.assertEqual(lines[0], "directory\t0\tdocs/")
                    self.assertIn("file\t2048\tdocs/notes/binary.bin", lines)
                    for line in lines:
                        name = line.split("\t")[-1]
                        self.assertTrue(name.startswith("docs/"), line)

                    out = root / f"out{len(arg)}"
                    self.run_cli(["extract", str(archive), "--outdir", str(out), "--quiet"])
                    _compare_trees(docs, out / "docs")

    def test_archive_readable_by_tarfile(self):
        import tarfile

        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _build_fixture_tree(root, include_symlink=False)
            archive = root / "out.tar"
            self.run_cli(["create", str(archive), str(root / "docs"), "--quiet"])
            with tarfile.open(archive, "r:") as tf:
                names = tf.getnames()
                self.assertIn("docs/readme.txt", names)
                self.assertEqual(tf.extractfile("docs/readme.txt").read(), b"hello world\n" * 20)

    def test_extract_tarfile_archive(self):
        import io
        import tarfile

        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            archive = root / "gnu.tar"
            with tarfile.open(archive, "w", format=tarfile.GNU_FORMAT) as tf:
                info = tarfile.TarInfo("pkg/data.txt")
                info.size = 4
                info.mode = 0o640
                tf.addfile(info, io.BytesIO(b"data"))
            out = root / "out"
            self.run_cli(["extract", str(archive), "--outdir", str(out), "--quiet"])
            self.assertEqual((out / "pkg" / "data.txt").read_bytes(), b"data")
            self.assertEqual((out / "pkg" / "data.txt").stat().st_mode & 0o777, 0o640)

    def test_conflict_policies(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            file_path = root / "file.txt"
            file_path.write_text("alpha")
            symlink_path = root / "link.txt"
            symlink_available = hasattr(os, "symlink")
            if symlink_available:
                try:
                    os.symlink("file.txt", symlink_path)
                except OSError:
                    symlink_available = False

            archive = root / "arc.tar"
            create_args = ["create", str(archive), str(file_path)]
            if symlink_available:
                create_args.append(str(symlink_path))
            # Store file/symlink directly (no parent directory wrapper)
            self.run_cli(create_args)

            out_skip = root / "ex_skip"
            out_skip.mkdir()
            (out_skip / "file.txt").write_text("beta")
            skip_proc = self.run_cli(["extract", str(archive), "--outdir", str(out_skip), "--exists", "skip"])
            self.assertIn("skipping: file.txt", skip_proc.stdout)
            self.assertEqual((out_skip / "file.txt").read_text(), "beta")

            out_rename = root / "ex_rename"
            out_rename.mkdir()
            (out_rename / "file.txt").write_text("beta")
            rename_proc = self.run_cli(["extract", str(archive), "--outdir", str(out_rename), "--exists", "rename"])
            self.assertIn("renamed to", rename_proc.stdout)
            self.assertEqual((out_rename / "file.txt").read_text(), "beta")
            self.assertEqual((out_rename / "file (1).txt").read_text(), "alpha")

            out_overwrite = root / "ex_overwrite"
            out_overwrite.mkdir()
            (out_overwrite / "file.txt").write_text("beta")
            self.run_cli(["extract", str(archive), "--outdir", str(out_overwrite), "--exists", "overwrite"])
            self.assertEqual((out_overwrite / "file.txt").read_text(), "alpha")
            if symlink_available:
                self.assertEqual(os.readlink(out_overwrite / "link.txt"), "file.txt")

            out_fail = root / "ex_fail"
            out_fail.mkdir()
            (out_fail / "file.txt").write_text("beta")
            fail_proc = self.run_cli(["extract", str(archive), "--outdir", str(out_fail), "--exists", "fail"], expect=2)
            self.assertIn("Destination exists", fail_proc.stderr)
            self.assertEqual((out_fail / "file.txt").read_text(), "beta")

    def test_extract_rejects_parent_segments(self):
        import io
        import tarfile

        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            archive = root / "evil.tar"
            with tarfile.open(archive, "w", format=tarfile.USTAR_FORMAT) as tf:
                info = tarfile.TarInfo("../escape.txt")
                info.size = 4
                tf.addfile(info, io.BytesIO(b"evil"))
            out = root / "out"
            proc = self.run_cli(["extract", str(archive), "--outdir", str(out)], expect=2)
            self.assertIn("Error:", proc.stderr)
            self.assertFalse((root / "escape.txt").exists())

    def test_verify_detects_corruption(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "data"
            src.mkdir()
            (src / "file.bin").write_bytes(_random_bytes(2048))
            archive = root / "sample.tar"
            self.run_cli(["create", str(archive), str(src)])

            # second header: the file entry after the directory entry
            with open(archive, "rb+") as fh:
                fh.seek(512 + 20)
                b = fh.read(1)
                fh.seek(512 + 20)
                fh.write(bytes([b[0] ^ 0x11]))

            proc = self.run_cli(["verify", str(archive)], expect=1)
            self.assertIn("FAIL", proc.stdout)

    def test_verify_detects_truncation(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "big.bin"
            src.write_bytes(_random_bytes(5000))
            archive = root / "cut.tar"
            self.run_cli(["create", str(archive), str(src)])
            with open(archive, "rb+") as fh:
                fh.truncate(512 + 1000)
            proc = self.run_cli(["verify", str(archive)], expect=1)
            self.assertIn("FAIL", proc.stdout)

    def test_missing_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            proc = self.run_cli(["list", str(Path(tmp) / "nope.tar")], expect=2)
            self.assertIn("Error:", proc.stderr)


if __name__ == "__main__":
    unittest.main()
