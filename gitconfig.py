"""
.git/config is an INI-like file:

    [core]
    	repositoryformatversion = 0
    	filemode = false

configparser can read it, but it writes options flush left and chokes on lines git happily
ignores, so parsing and writing are done here and configparser only holds the values.
"""

import configparser
import logging
import re

logger = logging.getLogger(__name__)

SECTION_RE = re.compile(r"^\[(?P<section>.+?)\]\s*$")
# pairs must be indented, like git writes them
KEY_VALUE_RE = re.compile(r"^\s+(?P<key>[^=\s][^=]*?)\s*=\s*(?P<value>.*?)\s*$")


class ConfigStore():

    def __init__(self):
        # no section can be named "" (see SECTION_RE), so the defaults section stays unused
        self._parser = configparser.RawConfigParser(default_section="", strict=False)
        # keep the case of keys as written
        self._parser.optionxform = str

    @classmethod
    def parse(cls, lines):
        """
        Build a store from the lines of a config file.
        Lines that are neither a section header nor an indented `key = value` pair are skipped,
        and so are pairs that appear before the first section.
        """
        conf = cls()
        section = None

        for number, line in enumerate(lines, start=1):
            line = line.rstrip("\r\n")

            match = SECTION_RE.match(line)
            if match:
                section = match.group("section")
                if not conf._parser.has_section(section):
                    conf._parser.add_section(section)
                continue

            match = KEY_VALUE_RE.match(line)
            if match and section is not None:
                conf._parser.set(section, match.group("key"), match.group("value"))
                continue

            if line.strip():
                logger.debug("skipping config line %d: %r", number, line)

        return conf

    @classmethod
    def read(cls, path):
        with open(path, "r") as fp:
            return cls.parse(fp.readlines())

    def write(self, path):
        with open(path, "w") as fp:
            fp.write(self.serialize())

    def set(self, section, key, value):
        if not self._parser.has_section(section):
            self._parser.add_section(section)
        self._parser.set(section, key, str(value))

    def get(self, section, key, fallback=None):
        return self._parser.get(section, key, fallback=fallback)

    def getint(self, section, key, fallback=None):
        return self._parser.getint(section, key, fallback=fallback)

    def getboolean(self, section, key, fallback=None):
        return self._parser.getboolean(section, key, fallback=fallback)

    def sections(self):
        return self._parser.sections()

    def items(self, section):
        return self._parser.items(section)

    def serialize(self):
        output = ""

        for section in self._parser.sections():
            output += f"[{section}]\n"
            for key, value in self._parser.items(section):
                output += f"\t{key} = {value}\n"

        return output


def repo_default_config():
    ret = ConfigStore()

    # version of the gitdir format. 0 means initial, 1 is the same with some extensions. git panics on > 1
    ret.set("core", "repositoryformatversion", "0")
    # disable tracking of file modes (permissions) changes in the worktree
    ret.set("core", "filemode", "false")
    # indicates that this repository has a worktree
    ret.set("core", "bare", "false")

    return ret
