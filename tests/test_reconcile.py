import pathlib

from PDL.reconcile import ProcessedFileLedger, find_new_files, stage_ledger


def _touch(path: pathlib.Path, text: str = "MSH|^~\\&|\r") -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_finds_message_files_recursively(tmp_path):
    _touch(tmp_path / "a.txt")
    _touch(tmp_path / "nested" / "deeper" / "b.msg")
    _touch(tmp_path / "nested" / "notes.csv")
    _touch(tmp_path / "c.hl7")

    found = find_new_files(tmp_path, ProcessedFileLedger())
    assert found == (
        str((tmp_path / "a.txt").resolve()),
        str((tmp_path / "nested" / "deeper" / "b.msg").resolve()),
    )
    assert isinstance(found, tuple)


def test_ledger_members_are_skipped(tmp_path):
    a = _touch(tmp_path / "a.txt")
    b = _touch(tmp_path / "b.txt")
    ledger = ProcessedFileLedger([str(a.resolve())])
    assert find_new_files(tmp_path, ledger) == (str(b.resolve()),)


def test_reconcile_is_idempotent(tmp_path):
    _touch(tmp_path / "a.txt")
    _touch(tmp_path / "sub" / "b.msg")
    ledger = ProcessedFileLedger()

    first = find_new_files(tmp_path, ledger)
    assert len(first) == 2
    ledger.extend(first)
    assert find_new_files(tmp_path, ledger) == ()


def test_excluded_ledger_file_is_never_input(tmp_path):
    ledger_path = _touch(tmp_path / "done.txt", "")
    msg = _touch(tmp_path / "a.msg")
    found = find_new_files(tmp_path, ProcessedFileLedger(), exclude=[ledger_path])
    assert found == (str(msg.resolve()),)


def test_paths_are_canonical(tmp_path):
    real = _touch(tmp_path / "data" / "a.txt")
    link_dir = tmp_path / "link"
    link_dir.symlink_to(tmp_path / "data", target_is_directory=True)
    ledger = ProcessedFileLedger([str(real.resolve())])
    assert find_new_files(link_dir, ledger) == ()


def test_missing_ledger_loads_empty(tmp_path):
    ledger = ProcessedFileLedger.load(tmp_path / "done.txt")
    assert len(ledger) == 0


def test_ledger_round_trip_keeps_prior_and_current(tmp_path):
    path = tmp_path / "done.txt"
    path.write_text("/data/old1.txt\n/data/old2.txt\n\n", encoding="utf-8")
    ledger = ProcessedFileLedger.load(path)
    assert ledger.paths == ["/data/old1.txt", "/data/old2.txt"]

    ledger.extend(["/data/new.msg", "/data/old1.txt"])
    tmp = stage_ledger(ledger, path)
    tmp.replace(path)

    assert path.read_text(encoding="utf-8").splitlines() == [
        "/data/old1.txt",
        "/data/old2.txt",
        "/data/new.msg",
    ]
    assert not tmp.exists()


def test_symlink_loop_yields_each_file_once(tmp_path):
    msg = _touch(tmp_path / "a.msg")
    (tmp_path / "loop").symlink_to(tmp_path, target_is_directory=True)

    assert find_new_files(tmp_path, ProcessedFileLedger()) == (str(msg.resolve()),)


def test_two_links_to_one_folder_queue_files_once(tmp_path):
    real_dir = tmp_path / "store" / "20160101"
    a = _touch(real_dir / "a.msg")
    b = _touch(real_dir / "b.txt")
    root = tmp_path / "root"
    root.mkdir()
    (root / "first").symlink_to(real_dir, target_is_directory=True)
    (root / "second").symlink_to(real_dir, target_is_directory=True)
    (root / "c.msg").symlink_to(a)

    found = find_new_files(root, ProcessedFileLedger())

    assert found == (str(a.resolve()), str(b.resolve()))
