import argparse, logging, sys

from errors import GitlingError
from objects import object_find, object_hash, object_read
from repository import repo_create, repo_find

logger = logging.getLogger(__name__)


def cmd_init(args):
    repo = repo_create(args.path)
    print(f"Initialized empty repository in {repo.gitdir}")


def cmd_cat_file(args):
    repo = repo_find()
    cat_file(repo, args.object, args.type.encode())


def cat_file(repo, name, type=None):
    obj = object_read(repo, object_find(repo, name))

    if type and obj.object_type != type:
        raise GitlingError(f"{name} is a {obj.object_type.decode()}, not a {type.decode()}")

    sys.stdout.buffer.write(obj.serialize())
    sys.stdout.buffer.flush()


def cmd_hash_object(args):
    """
    We only implement object storage using "loose objects". Git also has another storage mechanism
    called packfiles, which is essentially just a collection of multiple loose objects.
    https://wyag.thb.lt/#packfiles
    """
    if args.write:
        repo = repo_find()
    else:
        repo = None

    with open(args.path, 'rb') as fp:
        sha = object_hash(fp.read(), args.type.encode(), repo)
        print(sha)


argparser = argparse.ArgumentParser(prog="gitling", description="A tiny content-addressed object store")
argparser.add_argument("-v", "--verbose", action="store_true", help="Log what the store is doing")

# enforce that `gitling` must be called with a command --> `gitling COMMAND`
argsubparsers = argparser.add_subparsers(title="Available commands", dest="command")
argsubparsers.required = True

init_cmd = argsubparsers.add_parser("init", help="Initialize a new, empty repository.")
init_cmd.add_argument("path", metavar="directory", nargs="?", default=".", help="Where to create the repository?")

cat_file_cmd = argsubparsers.add_parser("cat-file", help="Provide content of repository objects.")
cat_file_cmd.add_argument("type", metavar="type", choices=["blob", "tag", "commit", "tree"], help="Specify the type")
cat_file_cmd.add_argument("object", metavar="object", help="The object to display")

hash_object_cmd = argsubparsers.add_parser("hash-object", help="Compute object hash/ID and optionally create an object from a file.")
hash_object_cmd.add_argument("-t", metavar="type", dest="type",
                             choices=["blob", "commit", "tag", "tree"],
                             default="blob",
                             help="Specify the type")
hash_object_cmd.add_argument("-w", dest="write", action="store_true", help="Actually write the object in the repository")
hash_object_cmd.add_argument("path", help="Path to the object file")


# entrypoint
def main(argv=None):
    args = argparser.parse_args(sys.argv[1:] if argv is None else argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        match args.command:
            case "cat-file"    : cmd_cat_file(args)
            case "hash-object" : cmd_hash_object(args)
            case "init"        : cmd_init(args)
    except (GitlingError, OSError) as e:
        logger.debug("%s failed", args.command, exc_info=True)
        print(f"gitling: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
