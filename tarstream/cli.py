from __future__ import annotations

import argparse
import errno
import os
import shutil
import sys
import time
from pathlib import Path
from typing import List, Optional, Tuple

from tarstream.constants import DATA_TYPES, TYPE_DIRECTORY, TYPE_LINK, TYPE_SYMLINK
from tarstream.errors import FormatError, TarError
from tarstream.pathutil import norm_path
from tarstream.reader import ArchiveReader
from tarstream.writer import ArchiveWriter


def _safe_chmod(path: str, mode: Optional[int]) -> None:
    """Best-effort chmod that never raises.

    Args:
        path: Destination filesystem path to update.
        mode: POSIX mode to apply (e.g., 0o755). If None, no change is made.
    """
    if mode is None:
        return
    try:
        os.chmod(path, mode)
    except OSError as exc:
        print(f"Warning: failed to set mode on {path}: {exc}", file=sys.stderr)


def _safe_utime(path: str, mtime: Optional[int]) -> None:
    """Best-effort utime that never raises; atime is set to mtime."""
    if mtime is None:
        return
    try:
        os.utime(path, (mtime, mtime), follow_symlinks=False)
    except (OSError, NotImplementedError) as exc:
        print(f"Warning: failed to set timestamps on {path}: {exc}", file=sys.stderr)


def _inside(root: str, path: str) -> bool:
    real_root = os.path.realpath(root)
    real = os.path.realpath(path)
    return real == real_root or real.startswith(real_root + os.sep)


def _next_nonconflicting_path(path: str) -> str:
    if not os.path.lexists(path):
        return path
    base_dir = os.path.dirname(path)
    root, ext = os.path.splitext(os.path.basename(path))
    i = 1
    while True:
        candidate = os.path.join(base_dir, f"{root} ({i}){ext}")
        if not os.path.lexists(candidate):
            return candidate
        i += 1


def _arcname(base: str, root: str, full: str) -> str:
    rel = os.path.relpath(full, start=root)
    return "/".join([base] + rel.split(os.sep))


def cmd_create(output: str, inputs: list[str], *, quiet: bool = False) -> bool:
    """Create a tar archive from filesystem paths.

    Args:
        output: Path of the .tar file to write.
        inputs: Files, directories and symlinks to store. Directories are
            walked recursively; symlinks are stored as links, not followed.
        quiet: Only print the summary line.
    """
    w = ArchiveWriter()
    n_files = n_dirs = n_links = 0
    total_bytes = 0

    def _add_symlink(arc: str, full: str) -> None:
        st = os.lstat(full)
        w.append(
            arc,
            type=TYPE_SYMLINK,
            link_name=os.readlink(full),
            file_mode=st.st_mode & 0o7777,
            mtime=int(st.st_mtime),
            uid=st.st_uid,
            gid=st.st_gid,
        )

    for x in inputs:
        p = Path(x)
        # "." and ".." name the directory they resolve to
        base = os.path.basename(os.path.abspath(x))
        if not base:
            raise ValueError(f"Cannot archive the filesystem root: {x}")
        if p.is_symlink():
            _add_symlink(base, str(p))
            n_links += 1
        elif p.is_dir():
            w.append(base + "/", file_path=str(p))
            n_dirs += 1
            for root, dirnames, filenames in os.walk(str(p)):
                dirnames.sort()
                for d in dirnames:
                    sub = os.path.join(root, d)
                    if os.path.islink(sub):
                        _add_symlink(_arcname(base, str(p), sub), sub)
                        n_links += 1
                        continue
                    w.append(_arcname(base, str(p), sub) + "/", file_path=sub)
                    n_dirs += 1
                # do not walk into symlinked directories
                dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(root, d))]
                for f in sorted(filenames):
                    full = os.path.join(root, f)
                    arc = _arcname(base, str(p), full)
                    if os.path.islink(full):
                        _add_symlink(arc, full)
                        n_links += 1
                        continue
                    w.append(arc, file_path=full)
                    n_files += 1
                    total_bytes += os.path.getsize(full)
                    if not quiet:
                        print(f"    adding: {arc}")
        else:
            w.append(base, file_path=str(p))
            n_files += 1
            total_bytes += os.path.getsize(str(p))
            if not quiet:
                print(f"    adding: {base}")

    t0 = time.time()
    with open(output, "wb") as fh:
        written = w.write_to(fh)
    dt = max(0.000001, time.time() - t0)
    mib = total_bytes / (1024.0 * 1024.0)
    print(
        f"Done: {n_files} files, {n_dirs} dirs, {n_links} links; "
        f"{mib:.2f} MiB in {dt:.1f}s; archive {written} bytes"
    )
    return True


def cmd_list(archive: str) -> bool:
    """List archive entries, one per line: type, size (or link target), name."""
    with open(archive, "rb") as fh:
        for e in ArchiveReader(fh):
            if e.type in (TYPE_SYMLINK, TYPE_LINK):
                print(f"{e.type}\t-> {e.link_name}\t{e.file_name}")
            else:
                print(f"{e.type}\t{e.file_size}\t{e.file_name}")
    return True


def cmd_extract(archive: str, *, outdir: str = ".", exists: str = "rename", quiet: bool = False) -> bool:
    """Extract files, directories and links from a tar archive.

    Args:
        archive: Path of the .tar file.
        outdir: Destination directory; created if missing.
        exists: What to do when a destination file exists: overwrite, skip,
            rename (append ' (n)' before the extension) or fail.
        quiet: Only print the summary line.
    """
    os.makedirs(outdir, exist_ok=True)
    processed_files = processed_bytes = 0
    created_dirs = created_links = skipped_entries = renamed_entries = 0
    # Directory metadata is applied last; writing children would reset mtime
    dir_meta: List[Tuple[str, Optional[int], Optional[int]]] = []
    t0 = time.time()

    with open(archive, "rb") as fh:
        for e in ArchiveReader(fh):
            rel = norm_path(e.file_name)
            if not rel:
                continue
            dst = os.path.join(outdir, *rel.split("/"))
            if not _inside(outdir, os.path.dirname(dst)):
                raise ValueError(f"Refusing to extract outside of {outdir}: {e.file_name}")

            if e.type == TYPE_DIRECTORY:
                os.makedirs(dst, exist_ok=True)
                if not quiet:
                    print(f"   creating: {rel}/")
                dir_meta.append((dst, e.file_mode, e.mtime))
                created_dirs += 1
                continue

            if e.type not in DATA_TYPES and e.type not in (TYPE_SYMLINK, TYPE_LINK):
                print(f"Warning: skipping {rel}: unsupported entry type {e.type}", file=sys.stderr)
                skipped_entries += 1
                continue

            os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
            actual_dst = dst
            if os.path.lexists(actual_dst):
                if exists == "overwrite":
                    if os.path.isdir(actual_dst) and not os.path.islink(actual_dst):
                        raise RuntimeError(f"Cannot overwrite directory: {actual_dst}")
                    os.remove(actual_dst)
                elif exists == "skip":
                    print(f"    skipping: {rel} (exists)")
                    skipped_entries += 1
                    continue
                elif exists == "rename":
                    actual_dst = _next_nonconflicting_path(actual_dst)
                else:
                    raise RuntimeError(f"Destination exists: {actual_dst}")

            if e.type == TYPE_SYMLINK:
                try:
                    os.symlink(e.link_name, actual_dst)
                except (NotImplementedError, AttributeError):
                    print(f"Warning: symlinks not supported; skipping {rel}", file=sys.stderr)
                    skipped_entries += 1
                    continue
                except OSError as exc:
                    if exc.errno in (errno.EPERM, errno.EOPNOTSUPP):
                        print(f"Warning: symlinks not supported; skipping {rel}", file=sys.stderr)
                        skipped_entries += 1
                        continue
                    raise
                if not quiet:
                    print(f" symlinking: {rel} -> {e.link_name}")
                created_links += 1
            elif e.type == TYPE_LINK:
                target = os.path.join(outdir, *norm_path(e.link_name).split("/"))
                if not _inside(outdir, target):
                    raise ValueError(f"Refusing hard link outside of {outdir}: {e.link_name}")
                os.link(target, actual_dst)
                if not quiet:
                    print(f"    linking: {rel} => {e.link_name}")
                created_links += 1
            else:
                if not quiet:
                    print(f" extracting: {rel}")
                with open(actual_dst, "wb") as out:
                    shutil.copyfileobj(e, out)
                processed_files += 1
                processed_bytes += e.file_size or 0
                _safe_chmod(actual_dst, e.file_mode)
                _safe_utime(actual_dst, e.mtime)

            if actual_dst != dst:
                print(f"       note: renamed to {actual_dst}")
                renamed_entries += 1

    for path, mode, mtime in reversed(dir_meta):
        _safe_chmod(path, mode)
        _safe_utime(path, mtime)

    dt = max(0.000001, time.time() - t0)
    mib = processed_bytes / (1024.0 * 1024.0)
    print(
        f"Done: extracted {processed_files} files ({mib:.2f} MiB) in {dt:.1f}s; "
        f"dirs={created_dirs} links={created_links} skipped={skipped_entries} renamed={renamed_entries}"
    )
    return True


def cmd_verify(archive: str) -> bool:
    """Read every header and drain every entry.

    Prints:
        "OK" with an entry count on success, "FAIL" and the reason otherwise.
    """
    count = 0
    total = 0
    try:
        with open(archive, "rb") as fh:
            for e in ArchiveReader(fh):
                while True:
                    chunk = e.read(64 * 1024)
                    if not chunk:
                        break
                    total += len(chunk)
                count += 1
    except FormatError as exc:
        print(f"FAIL: {exc}")
        return False
    print(f"OK: {count} entries, {total} data bytes")
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="tarstream",
        description="Streaming ustar archive tool",
        epilog="Archives are written in POSIX ustar format; GNU and V7 archives can be read.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_create = sub.add_parser("create", help="Create archive")
    ap_create.add_argument("output", help="Output .tar path")
    ap_create.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_create.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")

    ap_extract = sub.add_parser("extract", help="Extract archive")
    ap_extract.add_argument("archive", help="Archive path")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    ap_extract.add_argument(
        "--exists",
        choices=["overwrite", "skip", "rename", "fail"],
        default="rename",
        help=(
            "What to do if a destination file exists: overwrite (replace), "
            "skip (do not extract that entry), rename (append ' (n)' before extension), or fail (abort). "
            "Default: rename"
        ),
    )

    ap_verify = sub.add_parser("verify", help="Check every header checksum and entry length")
    ap_verify.add_argument("archive", help="Archive path")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "create":
            cmd_create(args.output, args.inputs, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.archive)
        elif args.cmd == "extract":
            cmd_extract(args.archive, outdir=args.outdir, exists=args.exists, quiet=args.quiet)
        elif args.cmd == "verify":
            if not cmd_verify(args.archive):
                sys.exit(1)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (TarError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
