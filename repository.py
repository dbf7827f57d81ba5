import logging
import os

from errors import (DirectoryNotEmpty, NoRepositoryFound, NotADirectory, NotARepository, PathIsFile,
                    UnsupportedFormatVersion)
from gitconfig import ConfigStore, repo_default_config

logger = logging.getLogger(__name__)

GITDIR_NAME = ".git"
SUPPORTED_FORMAT_VERSION = 0


class Repository():

    # force is used to create a new repository from a repository object
    def __init__(self, path, force=False):
        # this is where the files checked into the version control live
        self.worktree = path
        # this is where git stores all its data, typically worktree/.git
        self.gitdir = os.path.join(path, GITDIR_NAME)

        if not (force or os.path.isdir(self.gitdir)):
            raise NotARepository(f"Not a git repository {path}")

        # the git conf --> an INI-like file
        self.conf = ConfigStore()
        config_file_path = repo_file(self, "config")

        if config_file_path and os.path.exists(config_file_path):
            self.conf = ConfigStore.read(config_file_path)
        elif not force:
            raise NotARepository(f"Configuration file missing in {self.gitdir}")

        if not force:
            version = self.conf.get("core", "repositoryformatversion")
            if version is None or version.strip() != str(SUPPORTED_FORMAT_VERSION):
                raise UnsupportedFormatVersion(version)

    def __repr__(self):
        return f"Repository({self.worktree!r})"


def repo_path(repo: Repository, *path):
    """
    Util function to get path under the git directory
    """
    return os.path.join(repo.gitdir, *path)


def repo_file(repo: Repository, *path, mkdir=False):
    """
    * Util function to get or create the path to a file
    * Raise exception if directory name for the file is already used by another file
    """
    # check for existence of or create parent directory
    if repo_dir(repo, *path[:-1], mkdir=mkdir):
        return repo_path(repo, *path)


def repo_dir(repo: Repository, *path, mkdir=False):
    """
    * Util function to get or create the path to a directory under the git directory.
    * Raise exception if path, or any of its existing parents, is not a directory
    """
    path = repo_path(repo, *path)
    return ensure_dir(path, mkdir=mkdir)


def ensure_dir(path, mkdir=False):
    if os.path.exists(path):
        if os.path.isdir(path):
            return path
        else:
            raise NotADirectory(f"Not a directory {path}")

    # the closest existing ancestor must be a directory too, otherwise nothing can be created below it
    parent = os.path.dirname(os.path.abspath(path))
    while not os.path.exists(parent):
        parent = os.path.dirname(parent)
    if not os.path.isdir(parent):
        raise NotADirectory(f"Not a directory {parent}")

    if mkdir:
        os.makedirs(path)
        return path


def repo_create(path):
    """
    Create a git repository inside the specified directory
    """
    if os.path.exists(path):
        if not os.path.isdir(path):
            raise PathIsFile(f"{path} is not a directory!")
        if os.listdir(path):
            raise DirectoryNotEmpty(f"{path} is not empty!")
    else:
        os.makedirs(path)

    repo = Repository(path, force=True)

    # create essential directories
    for parts in (("branches",), ("objects",), ("refs", "tags"), ("refs", "heads")):
        repo_dir(repo, *parts, mkdir=True)

    # create essential files

    # free form description for humans to read, rarely used
    with open(repo_file(repo, "description"), 'w') as fp:
        fp.write("Unnamed repository; edit this file 'description' to name the repository\n")

    # reference to the current head
    with open(repo_file(repo, "HEAD"), 'w') as fp:
        fp.write("ref: refs/heads/master\n")

    # gitconfig
    config = repo_default_config()
    config.write(repo_file(repo, "config"))

    logger.debug("initialized empty repository in %s", repo.gitdir)
    return Repository(path)


def repo_find(path="."):
    """
    Walk up from `path` and open the first directory that has a .git directory.
    """
    path = os.path.realpath(path)

    while True:
        if os.path.isdir(os.path.join(path, GITDIR_NAME)):
            logger.debug("found repository at %s", path)
            return Repository(path)

        parent = os.path.dirname(path)
        if parent == path:
            # we're at root and cannot navigate up any further
            raise NoRepositoryFound("No git directory.")
        path = parent
