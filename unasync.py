#!venv/bin/python
import os
import re
import sys

SUBS = [
    ("async def", "def"),
    ("async with", "with"),
    ("await ", ""),
    ("async for", "for"),
    ("__aiter__", "__iter__"),
    (r"Awaitable\[Response\]", "Response"),
    ("Awaitable, ", ""),
    ("AsyncIterator", "Iterator"),
    ("AsyncIterable", "Iterable"),
    ("AsyncBaseResponseStore", "SyncBaseResponseStore"),
    ("AsyncBaseStructuredStore", "SyncBaseStructuredStore"),
    ("AsyncSqliteResponseStore", "SyncSqliteResponseStore"),
    ("AsyncSqliteStructuredStore", "SyncSqliteStructuredStore"),
    ("AsyncStrategy", "SyncStrategy"),
    ("AsyncBypass", "SyncBypass"),
    ("AsyncCacheFirst", "SyncCacheFirst"),
    ("AsyncNetworkFirstStructured", "SyncNetworkFirstStructured"),
    ("AsyncOpportunisticCache", "SyncOpportunisticCache"),
    ("AsyncLifecycleManager", "SyncLifecycleManager"),
    ("AsyncOfflineProxy", "SyncOfflineProxy"),
    ("AsyncOfflineTransport", "SyncOfflineTransport"),
    ("AsyncOfflineClient", "SyncOfflineClient"),
    ("AsyncBaseTransport", "BaseTransport"),
    ("AsyncHTTPTransport", "HTTPTransport"),
    ("AsyncClient", "Client"),
    ("handle_async_request", "handle_request"),
    ("_aiter_stream", "_iter_stream"),
    ("aiter_raw", "iter_raw"),
    ("aread", "read"),
    ("aclose", "close"),
    ("make_async_iterator", "make_sync_iterator"),
    ("_async_base", "_sync_base"),
    ("_async_sqlite", "_sync_sqlite"),
    ("_async_strategies", "_sync_strategies"),
    ("_async_lifecycle", "_sync_lifecycle"),
    ("_async_offline", "_sync_offline"),
    ("aprint_sqlite_state", "print_sqlite_state"),
    ("AsyncMock", "MagicMock"),
    ("asend", "send"),
    ("anysqlite", "sqlite3"),
    ("@pytest.mark.anyio", ""),
]
# Patterns ending in punctuation, like Awaitable[Response], need no trailing word boundary
COMPILED_SUBS = [(re.compile(r"(^|\b)" + regex + r"($|\b|(?<=\W))"), repl) for regex, repl in SUBS]

# Lines that only held a removed decorator are dropped
DROPPED_LINE = object()

FILES = [
    ("lantern/_async_strategies.py", "lantern/_sync_strategies.py"),
    ("lantern/_async_lifecycle.py", "lantern/_sync_lifecycle.py"),
    ("lantern/_async_offline.py", "lantern/_sync_offline.py"),
    ("lantern/_async_httpx.py", "lantern/_sync_httpx.py"),
    ("tests/test_async_httpx.py", "tests/test_sync_httpx.py"),
]

USED_SUBS = set()


def unasync_line(line):
    original = line
    for index, (regex, repl) in enumerate(COMPILED_SUBS):
        old_line = line
        line = re.sub(regex, repl, line)
        if index not in USED_SUBS:
            if line != old_line:
                USED_SUBS.add(index)
    if line.strip() == "" and original.strip() != "":
        return DROPPED_LINE
    return line


def unasync_lines(lines):
    return [line for line in map(unasync_line, lines) if line is not DROPPED_LINE]


def unasync_file(in_path, out_path):
    with open(in_path) as in_file:
        with open(out_path, "w", newline="") as out_file:
            for line in unasync_lines(in_file.readlines()):
                out_file.write(line)


def unasync_file_check(in_path, out_path):
    with open(in_path) as in_file:
        with open(out_path) as out_file:
            expected_lines = unasync_lines(in_file.readlines())
            actual_lines = out_file.readlines()
            for expected, actual in zip(expected_lines, actual_lines):
                if actual != expected:
                    print(f"unasync mismatch between {in_path!r} and {out_path!r}")
                    print(f"Expected sync code: {expected!r}")
                    print(f"Actual sync code:   {actual!r}")
                    sys.exit(1)
            if len(expected_lines) != len(actual_lines):
                print(f"unasync length mismatch between {in_path!r} and {out_path!r}")
                sys.exit(1)


def unasync_dir(in_dir, out_dir, check_only=False):
    for dirpath, dirnames, filenames in os.walk(in_dir):
        for filename in filenames:
            if not filename.endswith(".py"):
                continue
            rel_dir = os.path.relpath(dirpath, in_dir)
            in_path = os.path.normpath(os.path.join(in_dir, rel_dir, filename))
            out_path = os.path.normpath(os.path.join(out_dir, rel_dir, filename.replace("async", "sync")))
            print(in_path, "->", out_path)
            if check_only:
                unasync_file_check(in_path, out_path)
            else:
                unasync_file(in_path, out_path)


def main():
    check_only = "--check" in sys.argv
    for in_path, out_path in FILES:
        print(in_path, "->", out_path)
        if check_only:
            unasync_file_check(in_path, out_path)
        else:
            unasync_file(in_path, out_path)
    unasync_dir("tests/_async", "tests/_sync", check_only=check_only)
    unasync_dir("tests/_core/_async", "tests/_core/_sync", check_only=check_only)

    if len(USED_SUBS) != len(SUBS):
        unused_subs = [SUBS[i] for i in range(len(SUBS)) if i not in USED_SUBS]

        from pprint import pprint

        print("This SUBS was not used")
        pprint(unused_subs)
        exit(1)


if __name__ == "__main__":
    main()
