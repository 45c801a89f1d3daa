import json
import tempfile
import unittest
from pathlib import Path

from canopy_iiif.cache import ManifestCache, ManifestIndex
from tests.helpers import manifest


class TestManifestCache(unittest.TestCase):
    """
    Tests the on-disk manifest cache and its index.
    """

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.cache_dir: Path = Path(self._tmp.name) / 'iiif'

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_index_loads_empty(self) -> None:
        cache: ManifestCache = ManifestCache(self.cache_dir)
        computed: dict = cache.index.to_json()
        expected: dict = {'byId': {}, 'collection': None, 'parents': {}}
        self.assertEqual(computed, expected)

    def test_corrupt_index_loads_empty(self) -> None:
        """
        Checks that an unparseable index is treated as empty rather than failing.
        """
        self.cache_dir.mkdir(parents=True)
        (self.cache_dir / 'manifest-index.json').write_text('{not json', encoding='utf-8')
        cache: ManifestCache = ManifestCache(self.cache_dir)
        self.assertEqual(cache.index.by_id, {})
        self.assertIsNone(cache.index.collection)

    def test_index_with_wrong_shapes_is_tolerated(self) -> None:
        index: ManifestIndex = ManifestIndex.from_json({'byId': ['nope'], 'collection': 'x', 'parents': None})
        self.assertEqual(index.to_json(), {'byId': {}, 'collection': None, 'parents': {}})

    def test_put_writes_manifest_and_index(self) -> None:
        """
        Checks the file layout and the persisted id -> slug binding.
        """
        cache: ManifestCache = ManifestCache(self.cache_dir)
        slug: str = cache.put(manifest('http://x/m1', 'Test Work'), 'http://x/m1', parent='http://x/c')
        self.assertEqual(slug, 'test-work')
        manifest_file: Path = self.cache_dir / 'manifests' / 'test-work.json'
        self.assertTrue(manifest_file.exists())
        with (self.cache_dir / 'manifest-index.json').open('r', encoding='utf-8') as fh:
            index_json: dict = json.load(fh)
        self.assertEqual(index_json['byId'], {'http://x/m1': 'test-work'})
        self.assertEqual(index_json['parents'], {'http://x/m1': 'http://x/c'})

    def test_get_round_trips_through_a_fresh_cache(self) -> None:
        """
        Checks that a second cache instance (a later build) sees what the first stored.
        """
        ManifestCache(self.cache_dir).put(manifest('http://x/m1', 'Test Work'), 'http://x/m1')
        later: ManifestCache = ManifestCache(self.cache_dir)
        computed: dict | None = later.get('http://x/m1')
        self.assertEqual(computed, manifest('http://x/m1', 'Test Work'))

    def test_get_unknown_id_is_a_miss(self) -> None:
        cache: ManifestCache = ManifestCache(self.cache_dir)
        self.assertIsNone(cache.get('http://x/nope'))
        self.assertIsNone(cache.get(''))

    def test_get_with_missing_file_self_heals(self) -> None:
        """
        Checks that an index entry without its file reads as a miss, not an error.
        """
        cache: ManifestCache = ManifestCache(self.cache_dir)
        cache.put(manifest('http://x/m1', 'Test Work'), 'http://x/m1')
        (self.cache_dir / 'manifests' / 'test-work.json').unlink()
        self.assertIsNone(cache.get('http://x/m1'))

    def test_get_with_corrupt_file_is_a_miss(self) -> None:
        cache: ManifestCache = ManifestCache(self.cache_dir)
        cache.put(manifest('http://x/m1', 'Test Work'), 'http://x/m1')
        (self.cache_dir / 'manifests' / 'test-work.json').write_text('[[[', encoding='utf-8')
        self.assertIsNone(cache.get('http://x/m1'))

    def test_put_resolves_collisions_and_is_stable_across_builds(self) -> None:
        """
        Checks `untitled` / `untitled-1` for two untitled manifests, and the same result next build.
        """
        cache: ManifestCache = ManifestCache(self.cache_dir)
        first: list[str] = [
            cache.put(manifest('http://x/a'), 'http://x/a'),
            cache.put(manifest('http://x/b'), 'http://x/b'),
        ]
        later: ManifestCache = ManifestCache(self.cache_dir)
        second: list[str] = [
            later.put(manifest('http://x/a'), 'http://x/a'),
            later.put(manifest('http://x/b'), 'http://x/b'),
        ]
        self.assertEqual(first, ['untitled', 'untitled-1'])
        self.assertEqual(second, first)

    def test_flush_removes_manifests_and_bindings(self) -> None:
        """
        Checks that flush empties the manifest directory and bindings but keeps the signature.
        """
        cache: ManifestCache = ManifestCache(self.cache_dir)
        cache.put(manifest('http://x/m1', 'Test Work'), 'http://x/m1', parent='http://x/c')
        cache.index.collection = {'uri': 'A', 'hash': 'h', 'updatedAt': 't'}
        cache.flush()
        self.assertEqual(list((self.cache_dir / 'manifests').iterdir()), [])
        self.assertEqual(cache.index.by_id, {})
        self.assertEqual(cache.index.parents, {})
        self.assertEqual(cache.index.collection, {'uri': 'A', 'hash': 'h', 'updatedAt': 't'})
        self.assertIsNone(cache.get('http://x/m1'))

    def test_failed_write_still_returns_slug(self) -> None:
        """
        Checks that a write failure is swallowed and the binding still comes back.
        """
        self.cache_dir.mkdir(parents=True)
        (self.cache_dir / 'manifests').write_text('a file where the directory should be', encoding='utf-8')
        cache: ManifestCache = ManifestCache(self.cache_dir)
        slug: str = cache.put(manifest('http://x/m1', 'Test Work'), 'http://x/m1')
        self.assertEqual(slug, 'test-work')
        self.assertIsNone(cache.get('http://x/m1'))


class TestManifestCacheAsyncPut(unittest.IsolatedAsyncioTestCase):
    async def test_aput_matches_put(self) -> None:
        """
        Checks that the thread-written manifest and the saved index match what `put()` produces.
        """
        with tempfile.TemporaryDirectory() as tmp:
            cache_dir: Path = Path(tmp) / 'iiif'
            cache: ManifestCache = ManifestCache(cache_dir)
            slugs: list[str] = [
                await cache.aput(manifest('http://x/a'), 'http://x/a', parent='http://x/c'),
                await cache.aput(manifest('http://x/b'), 'http://x/b'),
            ]
            later: ManifestCache = ManifestCache(cache_dir)
            self.assertEqual(slugs, ['untitled', 'untitled-1'])
            self.assertEqual(later.index.by_id, {'http://x/a': 'untitled', 'http://x/b': 'untitled-1'})
            self.assertEqual(later.index.parents, {'http://x/a': 'http://x/c'})
            self.assertEqual(later.get('http://x/b'), manifest('http://x/b'))


if __name__ == '__main__':
    unittest.main()
