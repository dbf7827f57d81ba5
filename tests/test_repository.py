import hashlib, os, stat

import pytest

from errors import (AmbiguousObjectName, CorruptStream, DirectoryNotEmpty, InvalidConfigValue, MalformedObject,
                    NoRepositoryFound, NotADirectory, NotARepository, ObjectNotFound, PathIsFile,
                    UnsupportedFormatVersion)
from objects import Blob, Commit, Signature, Tag, Tree, TreeEntry, object_find, object_hash, object_read, object_write
from repository import Repository, repo_create, repo_dir, repo_file, repo_find
import repository, zcodec

NUMS_BLOB = "e2e107ac61ac259b87c544f6e7a4eb03422c6c21"
GIT_LOOSE_OBJECT = bytes.fromhex("78014bcac94f52b0643034323631353337b0b00400249803d6")


@pytest.fixture
def repo(tmp_path):
    return repo_create(str(tmp_path / "repo"))


def read_file(path):
    with open(path, "rb") as fp:
        return fp.read()


def writable_object(repo, sha):
    # stored objects are read-only
    path = os.path.join(repo.gitdir, "objects", sha[:2], sha[2:])
    os.chmod(path, 0o644)
    return path


def test_init_layout(tmp_path):
    path = str(tmp_path / "repo")
    repo = repo_create(path)

    gitdir = os.path.join(path, ".git")
    assert repo.gitdir == gitdir
    for directory in ("branches", "objects", os.path.join("refs", "tags"), os.path.join("refs", "heads")):
        assert os.path.isdir(os.path.join(gitdir, directory))
        assert os.listdir(os.path.join(gitdir, directory)) == []

    assert read_file(os.path.join(gitdir, "HEAD")) == b"ref: refs/heads/master\n"
    assert read_file(os.path.join(gitdir, "description")) == \
        b"Unnamed repository; edit this file 'description' to name the repository\n"
    assert read_file(os.path.join(gitdir, "config")) == \
        b"[core]\n\trepositoryformatversion = 0\n\tfilemode = false\n\tbare = false\n"
    assert repo.conf.get("core", "bare") == "false"


def test_init_existing_empty_directory(tmp_path):
    repo_create(str(tmp_path))
    assert os.path.isdir(tmp_path / ".git")


def test_init_twice(tmp_path):
    path = str(tmp_path / "repo")
    repo_create(path)
    with pytest.raises(DirectoryNotEmpty):
        repo_create(path)


def test_init_non_empty_directory(tmp_path):
    (tmp_path / "file.txt").write_text("hello")
    with pytest.raises(DirectoryNotEmpty):
        repo_create(str(tmp_path))


def test_init_on_file(tmp_path):
    (tmp_path / "file.txt").write_text("hello")
    with pytest.raises(PathIsFile):
        repo_create(str(tmp_path / "file.txt"))


def test_open_without_gitdir(tmp_path):
    with pytest.raises(NotARepository):
        Repository(str(tmp_path))


def test_open_without_config(tmp_path):
    (tmp_path / ".git").mkdir()
    with pytest.raises(NotARepository):
        Repository(str(tmp_path))


@pytest.mark.parametrize("config", [
    "[core]\n\trepositoryformatversion = 1\n",
    "[core]\n\tbare = false\n",
])
def test_open_unsupported_version(tmp_path, config):
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text(config)
    with pytest.raises(UnsupportedFormatVersion):
        Repository(str(tmp_path))


def test_find_root(tmp_path):
    repo_create(str(tmp_path / "a"))
    nested = tmp_path / "a" / "b" / "c"
    nested.mkdir(parents=True)

    repo = repo_find(str(nested))
    assert os.path.samefile(repo.worktree, tmp_path / "a")


def test_find_root_from_worktree(repo):
    assert os.path.samefile(repo_find(repo.worktree).worktree, repo.worktree)


def test_find_root_nothing_found(tmp_path, monkeypatch):
    nested = tmp_path / "x" / "y"
    nested.mkdir(parents=True)
    # don't let a real repository above tmp_path leak into the result
    monkeypatch.setattr(repository, "GITDIR_NAME", f".git-{tmp_path.name}")
    with pytest.raises(NoRepositoryFound):
        repo_find(str(nested))


def test_repo_dir_and_file(repo):
    assert repo_dir(repo, "refs", "remotes") is None
    assert repo_file(repo, "refs", "remotes", "origin") is None

    path = repo_file(repo, "refs", "remotes", "origin", mkdir=True)
    assert path == os.path.join(repo.gitdir, "refs", "remotes", "origin")
    assert os.path.isdir(os.path.dirname(path))


def test_repo_dir_collides_with_file(repo):
    with open(os.path.join(repo.gitdir, "objects", "ab"), "w") as fp:
        fp.write("not a directory")

    with pytest.raises(NotADirectory):
        repo_dir(repo, "objects", "ab", mkdir=True)
    with pytest.raises(NotADirectory):
        repo_dir(repo, "objects", "ab", "cd", mkdir=True)


def test_write_and_read_blob(repo):
    sha = object_write(repo, Blob(b"123456789"))

    assert sha == NUMS_BLOB
    assert os.path.isfile(os.path.join(repo.gitdir, "objects", sha[:2], sha[2:]))
    assert object_read(repo, sha) == Blob(b"123456789")
    assert object_write(repo, Blob(b"123456789"), persist=False) == sha


def test_write_without_persist(repo):
    sha = object_write(repo, Blob(b"never stored"), persist=False)
    assert not os.path.exists(os.path.join(repo.gitdir, "objects", sha[:2]))
    with pytest.raises(ObjectNotFound):
        object_read(repo, sha)


def test_write_is_idempotent(repo):
    sha = object_write(repo, Blob(b"same"))
    path = os.path.join(repo.gitdir, "objects", sha[:2], sha[2:])
    before = read_file(path)

    assert object_write(repo, Blob(b"same")) == sha
    assert read_file(path) == before
    assert os.listdir(os.path.dirname(path)) == [sha[2:]]


def test_write_tree_and_commit(repo):
    blob = object_write(repo, Blob(b"hello world\n"))
    tree = object_write(repo, Tree([TreeEntry(0o100644, "hello.txt", blob)]))
    someone = Signature("Jane Doe", "jane@example.com", 1700000000, "+0100")
    commit = object_write(repo, Commit(tree=tree, author=someone, committer=someone, message="first\n"))

    assert object_read(repo, tree).entries == [TreeEntry(0o100644, "hello.txt", blob)]
    stored = object_read(repo, commit)
    assert stored.tree == tree
    assert stored.parents == []
    assert stored.message == "first\n"


def test_read_object_written_by_git(repo):
    os.makedirs(os.path.join(repo.gitdir, "objects", "e2"))
    with open(os.path.join(repo.gitdir, "objects", "e2", NUMS_BLOB[2:]), "wb") as fp:
        fp.write(GIT_LOOSE_OBJECT)

    assert object_read(repo, NUMS_BLOB) == Blob(b"123456789")


def test_read_missing_object(repo):
    with pytest.raises(ObjectNotFound):
        object_read(repo, "0" * 40)


def test_read_bad_address(repo):
    with pytest.raises(ValueError):
        object_read(repo, "not-a-sha")


def test_read_corrupt_object(repo):
    sha = object_write(repo, Blob(b"data"))
    with open(writable_object(repo, sha), "wb") as fp:
        fp.write(b"definitely not zlib")

    with pytest.raises(CorruptStream):
        object_read(repo, sha)


def test_read_bad_length(repo):
    sha = object_write(repo, Blob(b"data"))
    with open(writable_object(repo, sha), "wb") as fp:
        fp.write(zcodec.compress(b"blob 5\x00data"))

    with pytest.raises(MalformedObject):
        object_read(repo, sha)


def test_loose_compression_level(repo):
    repo.conf.set("core", "loosecompression", "0")
    sha = object_write(repo, Blob(b"x" * 1000))
    stored = read_file(os.path.join(repo.gitdir, "objects", sha[:2], sha[2:]))
    assert len(stored) > 1000
    assert object_read(repo, sha) == Blob(b"x" * 1000)


def test_object_hash(repo):
    assert object_hash(b"123456789", b"blob") == NUMS_BLOB
    assert not os.path.exists(os.path.join(repo.gitdir, "objects", "e2"))

    assert object_hash(b"123456789", b"blob", repo) == NUMS_BLOB
    assert object_read(repo, NUMS_BLOB) == Blob(b"123456789")


def test_object_find(repo):
    sha = object_write(repo, Blob(b"123456789"))

    assert object_find(repo, sha) == sha
    assert object_find(repo, sha[:7]) == sha
    assert object_find(repo, sha[:7].upper()) == sha

    with pytest.raises(ObjectNotFound):
        object_find(repo, "abc")
    with pytest.raises(ObjectNotFound):
        object_find(repo, "ffffffff")


def test_object_find_ambiguous(repo):
    fanout = os.path.join(repo.gitdir, "objects", "ab")
    os.makedirs(fanout)
    for name in ("cd" + "0" * 36, "cd" + "1" * 36):
        open(os.path.join(fanout, name), "wb").close()

    with pytest.raises(AmbiguousObjectName) as excinfo:
        object_find(repo, "abcd")
    assert len(excinfo.value.candidates) == 2


def test_stored_objects_are_read_only(repo):
    sha = object_write(repo, Blob(b"123456789"))
    path = os.path.join(repo.gitdir, "objects", sha[:2], sha[2:])
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o444


@pytest.mark.parametrize("key, value", [
    ("compression", "10"),
    ("compression", "-2"),
    ("loosecompression", "fast"),
])
def test_bad_compression_level(repo, key, value):
    repo.conf.set("core", key, value)
    with pytest.raises(InvalidConfigValue):
        object_write(repo, Blob(b"123456789"))
    assert not os.path.exists(os.path.join(repo.gitdir, "objects", "e2", NUMS_BLOB[2:]))


def test_object_hash_keeps_given_bytes(repo):
    sha = bytes.fromhex(NUMS_BLOB)
    unsorted = b"100644 b\x00" + sha + b"100644 a\x00" + sha

    with pytest.raises(MalformedObject):
        object_hash(unsorted, b"tree", repo)
    assert os.listdir(os.path.join(repo.gitdir, "objects")) == []

    # leading zero in the mode: readable, but not what git writes
    with pytest.raises(MalformedObject):
        object_hash(b"040000 a\x00" + sha, b"tree")

    canonical = b"100644 a\x00" + sha + b"100644 b\x00" + sha
    framed = b"tree " + str(len(canonical)).encode() + b"\x00" + canonical
    assert object_hash(canonical, b"tree", repo) == hashlib.sha1(framed).hexdigest()


def test_every_written_object_reads_back(repo):
    someone = Signature("Jane Doe", "jane@example.com", 1700000000, "-0000")
    blob = object_write(repo, Blob(b"caf\xe9\n"))
    tree = object_write(repo, Tree([TreeEntry(0o100755, "run.sh", blob), TreeEntry(0o40000, "lib", blob)]))
    commit = object_write(repo, Commit(tree=tree, author=someone, committer=someone, message="",
                                       extra_headers=[("encoding", "latin-1")]))
    tag = object_write(repo, Tag(object=commit, type="commit", tag="v1", tagger=someone, message="multi\nline"))

    for sha in (blob, tree, commit, tag):
        obj = object_read(repo, sha)
        assert object_write(repo, obj, persist=False) == sha
