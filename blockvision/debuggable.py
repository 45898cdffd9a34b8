import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Any
from blockvision.type_defs import img_t, VizResults

logger = logging.getLogger(__name__)

DbgKey = str | Enum


def _key(key: DbgKey) -> str:
    return key.value if isinstance(key, Enum) else key


@dataclass
class Debuggable:
    """
    Debug-introspection node owned by a pipeline component.

    Holds named boolean toggles, the images produced for enabled toggles during
    the last run, and child nodes. Components must check `is_enabled` before
    computing an expensive artifact; `add_entry` ignores disabled keys anyway.
    """
    name: str
    options: Dict[str, bool] = field(default_factory=dict)
    data: VizResults = field(default_factory=dict)
    children: List['Debuggable'] = field(default_factory=list)

    def register(self, key: DbgKey, enabled: bool = False):
        self.options.setdefault(_key(key), enabled)

    def set_option(self, key: DbgKey, enabled: bool):
        key = _key(key)
        if key not in self.options:
            logger.warning("Debug option '%s' is not registered on '%s'", key, self.name)
        self.options[key] = enabled
        if not enabled:
            self.data.pop(key, None)

    def set_options(self, keys: Iterable[DbgKey], enabled: bool):
        for key in keys:
            self.set_option(key, enabled)

    def set_all(self, enabled: bool):
        """Toggle every option of this node and of all descendants."""
        self.set_options(list(self.options), enabled)
        for child in self.children:
            child.set_all(enabled)

    def is_enabled(self, key: DbgKey) -> bool:
        return self.options.get(_key(key), False)

    def add_entry(self, key: DbgKey, img: img_t):
        key = _key(key)
        if self.is_enabled(key):
            self.data[key] = img

    def clear(self):
        self.data.clear()

    def add_child(self, child: 'Debuggable'):
        self.children.append(child)

    def add_children(self, children: Iterable['Debuggable']):
        self.children.extend(children)

    def remove_child(self, child: 'Debuggable'):
        self.children = [c for c in self.children if c is not child]

    def find(self, path: str) -> 'Debuggable':
        """Resolve a '/'-separated path of child names below this node."""
        node = self
        for part in filter(None, path.split('/')):
            matches = [c for c in node.children if c.name == part]
            if not matches:
                raise KeyError(f"No debug node '{part}' under '{node.name}'")
            node = matches[0]
        return node

    def all_data(self, prefix: str = '') -> VizResults:
        """Enabled artifacts of the whole subtree, keyed by 'node/child/key'."""
        path = f"{prefix}{self.name}"
        result: VizResults = {
            f"{path}/{key}": img
            for key, img in self.data.items() if self.options.get(key, False)
        }
        for child in self.children:
            result.update(child.all_data(prefix=f"{path}/"))
        return result

    def snapshot(self) -> VizResults:
        """Like all_data but with copied images, safe to hand to another thread."""
        return {key: img.copy() for key, img in self.all_data().items()}

    def tree(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'options': dict(self.options),
            'children': [child.tree() for child in self.children],
        }
