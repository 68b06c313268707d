"""Address keyed lookups."""


class LowercaseDict(dict):
    """A dictionary that lowercases all string keys.

    - Strategy addresses come to us both checksummed and lowercased,
      depending on which registry or chain reply they came from

    - Used for address allow-lists, so ``address in d`` must work regardless of casing
    """

    def __init__(self, *args, **kwargs):
        super().__init__()
        if args:
            if len(args) > 1:
                raise TypeError("expected at most 1 argument, got %d" % len(args))
            self.update(args[0])
        if kwargs:
            self.update(kwargs)

    @staticmethod
    def _key(key):
        return key.lower() if isinstance(key, str) else key

    def __setitem__(self, key, value):
        super().__setitem__(self._key(key), value)

    def __getitem__(self, key):
        return super().__getitem__(self._key(key))

    def __contains__(self, key):
        return super().__contains__(self._key(key))

    def get(self, key, default=None):
        return super().get(self._key(key), default)

    def pop(self, key, *args):
        return super().pop(self._key(key), *args)

    def update(self, other=None, **kwargs):
        if other is not None:
            for k, v in other.items() if isinstance(other, dict) else other:
                self[k] = v
        for k, v in kwargs.items():
            self[k] = v

    def setdefault(self, key, default=None):
        return super().setdefault(self._key(key), default)
