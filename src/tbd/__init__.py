"""tbd: a git-native issue tracker."""

__version__ = "0.1.0"
