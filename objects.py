"""
At its core, git is a content-addressed file system. In regular file systems, the name of a file is arbitrary
and unrelated to its contents.
In git, the names of the files are derived mathematically (SHA-1 hash) from their contents.
This has an important implication: "You don't modify a file in git; you create a new file in a different
                                    location."

A git object is simply this type of file in the repository.
There are four kinds of them: blobs, trees, commits and tags.

The first 2 characters of the SHA-1 hash of an object are used as the directory name, and the rest as a file name

Object storage format:
* Starts with its type: blob, commit, tag or tree, followed by an ASCII space (0x20), then the size of the
object in bytes as an ASCII number, then null (0x00), then the contents of the object.
* The hash is computed over that whole framed byte string, not over the bare contents.

The objects are compressed with zlib before storing.
"""

from dataclasses import dataclass, field
from typing import ClassVar, List, Tuple, Union
import hashlib, logging, os, re, tempfile, zlib

from errors import *
from repository import Repository, repo_dir, repo_file
import zcodec

logger = logging.getLogger(__name__)

SHA_RE = re.compile(r"^[0-9a-f]{40}\Z")
# git has a minimum limit of 4 to be considered a short hash
SHORT_SHA_RE = re.compile(r"^[0-9A-Fa-f]{4,40}$")


def _text(raw):
    # names and messages are usually utf-8 but git does not enforce it
    return raw.decode("utf-8", "surrogateescape")


def _bytes(text):
    return text.encode("utf-8", "surrogateescape")


# Identity lines look like: `Jane Doe <jane@example.com> 1700000000 +0100`
SIGNATURE_RE = re.compile(rb"^(?P<name>.*) <(?P<email>[^<>]*)> (?P<timestamp>\d+) (?P<timezone>[+-]\d{4})$")
TIMEZONE_RE = re.compile(r"^[+-][0-9]{4}\Z")


def _check_sha(sha, what):
    if not isinstance(sha, str) or not SHA_RE.match(sha):
        raise ValueError(f"Bad object id {sha!r} for {what}")


def _check_extra_headers(extra_headers):
    # a key ends at the first space and a header at the first unindented newline
    for key, value in extra_headers:
        if not key or " " in key or "\n" in key:
            raise ValueError(f"Bad header name {key!r}")


@dataclass
class Signature:
    name: str
    email: str
    timestamp: int
    # kept as written so that -0000 survives a round-trip
    timezone: str = "+0000"

    def __post_init__(self):
        for text in (self.name, self.email):
            if any(c in text for c in "<>\n"):
                raise ValueError(f"Identity {text!r} may not contain '<', '>' or a newline")
        if not isinstance(self.timestamp, int) or self.timestamp < 0:
            raise ValueError(f"Bad timestamp {self.timestamp!r}")
        if not TIMEZONE_RE.match(self.timezone):
            raise ValueError(f"Bad timezone {self.timezone!r}, expected +HHMM or -HHMM")

    def serialize(self):
        return _bytes(f"{self.name} <{self.email}> {self.timestamp} {self.timezone}")

    @classmethod
    def deserialize(cls, raw):
        match = SIGNATURE_RE.match(raw)
        if not match:
            raise MalformedObject(f"Bad identity line {raw!r}")
        try:
            return cls(_text(match.group("name")), _text(match.group("email")),
                       int(match.group("timestamp")), match.group("timezone").decode("ascii"))
        except ValueError as e:
            raise MalformedObject(f"Bad identity line {raw!r}: {e}") from e


@dataclass
class Blob:
    """
    Blobs are user data. The content of every file you put in git is stored as a blob.
    """
    object_type: ClassVar[bytes] = b'blob'

    data: bytes = b''

    def serialize(self):
        return self.data

    @classmethod
    def deserialize(cls, data):
        return cls(data)


# key -> value list message
def kvlm_parse(raw):
    """
    Parse the format shared by commits and tags: `key value` header lines, a blank line, then a
    free-form message. A value continues on the following lines as long as they start with a space.
    Returns the headers as an ordered list of (key, value) pairs, and the message.
    """
    headers = list()
    start = 0

    while True:
        if start >= len(raw):
            raise MalformedObject("Missing blank line before message")

        next_nwline = raw.find(b'\n', start)
        if next_nwline == start:
            # a blank line: everything after it is the message
            return headers, raw[start+1:]
        if next_nwline < 0:
            raise MalformedObject("Unterminated header line")

        next_spc = raw.find(b' ', start, next_nwline)
        if next_spc < 0:
            raise MalformedObject(f"Header line without a value: {raw[start:next_nwline]!r}")
        key = raw[start:next_spc]

        # find the last line of this value: loop until we find a '\n' not followed by a space.
        end = next_nwline
        while end + 1 < len(raw) and raw[end+1] == ord(' '):
            end = raw.find(b'\n', end+1)
            if end < 0:
                raise MalformedObject("Unterminated header line")

        value = raw[next_spc+1:end].replace(b'\n ', b'\n')
        headers.append((key, value))
        start = end + 1


def kvlm_serialize(headers, message):
    output = b''

    for key, value in headers:
        output += key + b' ' + value.replace(b'\n', b'\n ') + b'\n'

    # the message is kept as is, including its trailing newline if it has one
    return output + b'\n' + message


def _pop_header(headers, key, required=True):
    """
    Remove and return the first header named `key` from the front of the list.
    Known headers have a fixed position, so only the front is looked at.
    """
    if headers and headers[0][0] == key:
        return headers.pop(0)[1]
    if required:
        raise MalformedObject(f"Missing {key.decode('ascii')} header")
    return None


def _parse_sha(raw):
    sha = raw.decode("ascii", "replace")
    if not SHA_RE.match(sha):
        raise MalformedObject(f"Bad object id {raw!r}")
    return sha


@dataclass
class Commit:
    """
    Here's how a sample commit looks like: https://wyag.thb.lt/#orgf087d48
    * Subsequent lines of a multiline value start with a space that the parser must drop. Eg:
        PGP signature
    * tree: Ref to a tree object. It maps blobs IDs to file system locations. It is the actual
        content of the commit: file contents, and where they are stored.
    * parent: zero or more. A root commit has none, a merge commit has several.
    """
    object_type: ClassVar[bytes] = b'commit'

    tree: str
    author: Signature
    committer: Signature
    message: str = ""
    parents: List[str] = field(default_factory=list)
    # headers git writes after committer: encoding, mergetag, gpgsig...
    extra_headers: List[Tuple[str, str]] = field(default_factory=list)

    def __post_init__(self):
        _check_sha(self.tree, "commit tree")
        for parent in self.parents:
            _check_sha(parent, "commit parent")
        _check_extra_headers(self.extra_headers)

    def serialize(self):
        headers = [(b'tree', self.tree.encode('ascii'))]
        headers += [(b'parent', parent.encode('ascii')) for parent in self.parents]
        headers.append((b'author', self.author.serialize()))
        headers.append((b'committer', self.committer.serialize()))
        headers += [(_bytes(key), _bytes(value)) for key, value in self.extra_headers]

        return kvlm_serialize(headers, _bytes(self.message))

    @classmethod
    def deserialize(cls, data):
        headers, message = kvlm_parse(data)

        tree = _parse_sha(_pop_header(headers, b'tree'))
        parents = list()
        while headers and headers[0][0] == b'parent':
            parents.append(_parse_sha(headers.pop(0)[1]))
        author = Signature.deserialize(_pop_header(headers, b'author'))
        committer = Signature.deserialize(_pop_header(headers, b'committer'))

        try:
            return cls(tree=tree, parents=parents, author=author, committer=committer,
                       message=_text(message),
                       extra_headers=[(_text(key), _text(value)) for key, value in headers])
        except ValueError as e:
            raise MalformedObject(str(e)) from e


@dataclass
class Tag:
    """
    An annotated tag. A lightweight tag is just a ref and never becomes an object.
    It uses the same format as a commit, with the headers: object, type, tag, tagger.
    """
    object_type: ClassVar[bytes] = b'tag'

    object: str
    type: str
    tag: str
    tagger: Signature
    message: str = ""
    extra_headers: List[Tuple[str, str]] = field(default_factory=list)

    def __post_init__(self):
        _check_sha(self.object, "tag target")
        if not isinstance(self.type, str) or self.type.encode('ascii', 'replace') not in OBJECT_TYPES:
            raise ValueError(f"Tag points to unknown type {self.type!r}")
        _check_extra_headers(self.extra_headers)

    def serialize(self):
        headers = [(b'object', self.object.encode('ascii')),
                   (b'type', self.type.encode('ascii')),
                   (b'tag', _bytes(self.tag)),
                   (b'tagger', self.tagger.serialize())]
        headers += [(_bytes(key), _bytes(value)) for key, value in self.extra_headers]

        return kvlm_serialize(headers, _bytes(self.message))

    @classmethod
    def deserialize(cls, data):
        headers, message = kvlm_parse(data)

        target = _parse_sha(_pop_header(headers, b'object'))
        target_type = _pop_header(headers, b'type')
        if target_type not in OBJECT_TYPES:
            raise MalformedObject(f"Tag points to unknown type {target_type!r}")
        name = _text(_pop_header(headers, b'tag'))
        tagger = Signature.deserialize(_pop_header(headers, b'tagger'))

        try:
            return cls(object=target, type=target_type.decode('ascii'), tag=name, tagger=tagger,
                       message=_text(message),
                       extra_headers=[(_text(key), _text(value)) for key, value in headers])
        except ValueError as e:
            raise MalformedObject(str(e)) from e


# Wrapper for a single record in the tree
@dataclass
class TreeEntry:
    # file mode as a number, e.g. 0o100644 for a regular file, 0o40000 for a subtree
    mode: int
    name: str
    sha: str

    def __post_init__(self):
        if not isinstance(self.mode, int) or self.mode < 0:
            raise ValueError(f"Bad mode {self.mode!r} for tree entry {self.name!r}")
        # the name is NUL terminated on disk, and a single path component
        if not self.name or "\x00" in self.name or "/" in self.name:
            raise ValueError(f"Bad tree entry name {self.name!r}")
        _check_sha(self.sha, f"tree entry {self.name!r}")

    def is_tree(self):
        return self.mode & 0o170000 == 0o040000


def tree_entry_sort_key(entry: TreeEntry):
    """
    Directories are sorted with a final '/' at their end.
    """
    if entry.is_tree():
        return _bytes(entry.name) + b'/'
    return _bytes(entry.name)


def tree_parse_one_record(raw, start=0):
    space = raw.find(b' ', start)
    if space < 0:
        raise MalformedObject("Tree entry without a mode")

    try:
        mode = int(raw[start:space].decode('ascii'), 8)
    except ValueError as e:
        raise MalformedObject(f"Bad tree entry mode {raw[start:space]!r}") from e

    null_terminator = raw.find(b'\x00', space)
    if null_terminator < 0 or null_terminator + 21 > len(raw):
        raise MalformedObject("Truncated tree entry")
    name = _text(raw[space+1:null_terminator])

    # 20 raw bytes, rendered as 40 hex characters
    sha = raw[null_terminator+1:null_terminator+21].hex()

    try:
        return null_terminator+21, TreeEntry(mode, name, sha)
    except ValueError as e:
        raise MalformedObject(str(e)) from e


@dataclass
class Tree:
    """
    https://wyag.thb.lt/#org5f03666
    Tree describes the contents of the work tree, maps the blobs --> path.
    Array of 3 element tuples (file_mode, path, sha-1)
    The SHA refers to either a blob or another tree.
    Format: [mode] space [path] 0x00 [sha-1]
    """
    object_type: ClassVar[bytes] = b'tree'

    entries: List[TreeEntry] = field(default_factory=list)

    def __post_init__(self):
        names = set()
        for entry in self.entries:
            if entry.name in names:
                raise ValueError(f"Duplicate tree entry {entry.name!r}")
            names.add(entry.name)

        # entries are kept in canonical order so that equal trees encode equally
        self.entries = sorted(self.entries, key=tree_entry_sort_key)

    def serialize(self):
        serialized_tree = b''

        for entry in self.entries:
            serialized_tree += format(entry.mode, 'o').encode('ascii')
            serialized_tree += b' '
            serialized_tree += _bytes(entry.name)
            serialized_tree += b'\x00'
            serialized_tree += bytes.fromhex(entry.sha)

        return serialized_tree

    @classmethod
    def deserialize(cls, data):
        curr = 0
        entries = list()

        while curr < len(data):
            curr, entry = tree_parse_one_record(data, curr)
            entries.append(entry)

        try:
            return cls(entries)
        except ValueError as e:
            raise MalformedObject(str(e)) from e


GitObject = Union[Blob, Tree, Commit, Tag]

OBJECT_TYPES = (b'blob', b'tree', b'commit', b'tag')


def object_encode(obj: GitObject):
    """
    Frame an object and compute its address.
    Returns (sha, framed bytes). The framed bytes are what gets compressed and stored.
    """
    # Serialize object data
    obj_data = obj.serialize()

    # Add header
    result = obj.object_type + b' ' + str(len(obj_data)).encode() + b'\x00' + obj_data

    # Compute sha
    return hashlib.sha1(result).hexdigest(), result


def object_decode(raw) -> GitObject:
    """
    Parse framed bytes back into an object, checking the header against the content.
    """
    # Read object type
    space_index = raw.find(b' ')
    if space_index < 0:
        raise MalformedObject("Missing object type")
    object_type = raw[:space_index]

    # Read and validate object size
    null_index = raw.find(b'\x00', space_index)
    if null_index < 0:
        raise MalformedObject("Unterminated object header")
    size = raw[space_index+1:null_index]
    if not size.isdigit():
        raise MalformedObject(f"Bad object length {size!r}")
    if int(size) != len(raw) - null_index - 1:
        raise MalformedObject(f"Bad length: header says {int(size)}, got {len(raw) - null_index - 1}")

    data = raw[null_index+1:]

    # Choose constructor
    match object_type:
        case b'commit': return Commit.deserialize(data)
        case b'tree': return Tree.deserialize(data)
        case b'tag': return Tag.deserialize(data)
        case b'blob': return Blob.deserialize(data)
        case _:
            raise UnsupportedType(object_type.decode('ascii', 'replace'))


def object_path(repo: Repository, sha, mkdir=False):
    if not SHA_RE.match(sha):
        raise ValueError(f"Not an object id: {sha!r}")
    return repo_file(repo, "objects", sha[:2], sha[2:], mkdir=mkdir)


def object_read(repo: Repository, sha) -> GitObject:
    """
    Read object from a git repository given its sha hash
    """
    path = object_path(repo, sha)

    if not path or not os.path.isfile(path):
        raise ObjectNotFound(f"No object {sha}")

    with open(path, "rb") as fp:
        raw = zcodec.decompress(fp.read())

    logger.debug("read object %s (%d bytes)", sha, len(raw))
    try:
        return object_decode(raw)
    except UnsupportedType:
        raise
    except MalformedObject as e:
        raise MalformedObject(f"Malformed object {sha}: {e}") from e


def _compression_level(repo: Repository):
    # same lookup order as git for loose objects
    for key in ("loosecompression", "compression"):
        level = repo.conf.get("core", key)
        if level is not None:
            break
    else:
        return zlib.Z_DEFAULT_COMPRESSION

    try:
        level = int(level)
    except ValueError as e:
        raise InvalidConfigValue(f"core.{key}: {level!r} is not a number") from e
    if not -1 <= level <= 9:
        raise InvalidConfigValue(f"core.{key}: level {level} is not between -1 and 9")
    return level


def object_write(repo: Repository, obj: GitObject, persist=True):
    """
    Compute the address of an object and, if `persist`, store it in the repository.
    """
    sha, framed = object_encode(obj)

    if not persist:
        return sha

    path = object_path(repo, sha, mkdir=True)
    if os.path.exists(path):
        # same address, same content
        return sha

    compressed = zcodec.compress(framed, _compression_level(repo))

    # write next to the target then rename, so the object path never holds a partial file
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), prefix="tmp_obj_")
    try:
        with os.fdopen(fd, "wb") as fp:
            fp.write(compressed)
        # loose objects are read-only, as git leaves them
        os.chmod(tmp_path, 0o444)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)

    logger.debug("wrote %s object %s", obj.object_type.decode('ascii'), sha)
    return sha


def object_hash(data, type, repo=None):
    """
    Hash raw content as an object of the given type, write it to repo if not None.
    """
    match type:
        case b'commit': obj = Commit.deserialize(data)
        case b'tag': obj = Tag.deserialize(data)
        case b'tree': obj = Tree.deserialize(data)
        case b'blob': obj = Blob.deserialize(data)
        case _:
            raise UnsupportedType(type.decode('ascii', 'replace'))

    # the address must be the one of `data` itself, not of a cleaned up copy
    if obj.serialize() != data:
        if type == b'tree':
            raise MalformedObject("tree entries not in canonical order")
        raise MalformedObject(f"{type.decode('ascii')} content is not in canonical form")

    return object_write(repo, obj, persist=repo is not None)


def object_find(repo: Repository, name):
    """
    Resolve a full or abbreviated object id to the full id of an existing object.
    """
    name = name.strip()
    if not SHORT_SHA_RE.match(name):
        raise ObjectNotFound(f"No such object {name}.")

    name = name.lower()
    prefix = name[:2]
    path = repo_dir(repo, "objects", prefix)

    candidates = list()
    if path:
        remaining_hash = name[2:]
        for file in sorted(os.listdir(path)):
            if file.startswith(remaining_hash) and SHA_RE.match(prefix + file):
                candidates.append(prefix + file)

    if not candidates:
        raise ObjectNotFound(f"No such object {name}.")
    if len(candidates) > 1:
        raise AmbiguousObjectName(name, candidates)

    return candidates[0]
