"""Caching system for taxmap.

This module caches the results of expensive command-line steps, chiefly
building a TaxMap from an input file. Entries are validated with a checksum
of the input files, so editing an input invalidates its cached build.
Storage is provided by diskcache.
"""

import os
import hashlib
import functools
import inspect
import logging
import time
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from diskcache import Cache

from taxmap.config import config

logger = logging.getLogger(__name__)

# All callers share one Cache handle per directory; it is reopened when the
# configured directory changes.
_cache_instance: Optional[Cache] = None
_cache_path: Optional[Path] = None
META_SUFFIX = "::meta"
META_VERSION = 1


def _close_cache() -> None:
    """Close the active diskcache instance."""
    global _cache_instance, _cache_path
    if _cache_instance is not None:
        _cache_instance.close()
        _cache_instance = None
        _cache_path = None


def get_cache() -> Cache:
    """Return a diskcache instance rooted at the current config cache dir."""
    global _cache_instance, _cache_path
    cache_dir = Path(config.cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    if _cache_instance is None or _cache_path != cache_dir:
        if _cache_instance is not None:
            _cache_instance.close()
        _cache_instance = Cache(directory=str(cache_dir))
        _cache_path = cache_dir
    return _cache_instance


def set_cache_namespace(namespace: str) -> Path:
    """Set the effective cache directory to a namespace under the base dir."""
    target_dir = Path(config.cache_base_dir) / namespace
    config.cache_dir = str(target_dir)
    _close_cache()
    target_dir.mkdir(parents=True, exist_ok=True)
    return target_dir


def get_cache_directory() -> Path:
    """Return the current cache directory as a Path."""
    cache_dir = Path(config.cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def compute_checksum(file_paths: List[str]) -> str:
    """Compute a SHA-256 checksum for a list of file paths.

    Args:
        file_paths: List of file paths to include in the checksum

    Returns:
        A SHA-256 hex digest representing the content of the files
    """
    if not file_paths:
        return ""

    hash_obj = hashlib.sha256()
    for file_path in sorted(file_paths):
        try:
            with open(file_path, "rb") as f:
                while True:
                    chunk = f.read(8192)
                    if not chunk:
                        break
                    hash_obj.update(chunk)
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"Could not include file in checksum: {file_path}, {str(e)}")

    return hash_obj.hexdigest()


def save_cache(key: str, obj: Any, checksum: str,
               metadata: Optional[Dict[str, Any]] = None) -> None:
    """Save an object to the cache.

    Args:
        key: Cache key for the object
        obj: The object to cache
        checksum: Checksum value for validation
        metadata: Additional metadata to store with the cache entry
    """
    cache = get_cache()
    meta = {
        "checksum": checksum,
        "timestamp": datetime.now().isoformat(),
        "version": META_VERSION,
    }
    if metadata:
        meta.update(metadata)

    try:
        cache.set(key, obj)
        cache.set(f"{key}{META_SUFFIX}", meta)
        logger.debug(f"Saved object to cache: {key}")
    except Exception as exc:
        logger.error(f"Failed to save to cache: {key}, {exc}")


def load_cache(key: str, expected_checksum: str, max_age: Optional[int] = None) -> Optional[Any]:
    """Load an object from the cache if it is still valid.

    Args:
        key: Cache key for the object
        expected_checksum: Checksum the entry must have been saved with
        max_age: Maximum age of the entry in seconds (None for no limit)

    Returns:
        The cached object, or None on a miss
    """
    cache = get_cache()
    meta = cache.get(f"{key}{META_SUFFIX}", default=None)
    if meta is None:
        logger.debug(f"Cache miss (metadata not found): {key}")
        return None

    if meta.get("checksum") != expected_checksum:
        logger.debug(f"Cache miss (checksum mismatch): {key}")
        return None

    if max_age is None:
        max_age = config.cache_max_age
    if max_age is not None:
        timestamp = datetime.fromisoformat(meta.get("timestamp", "2000-01-01T00:00:00"))
        age = (datetime.now() - timestamp).total_seconds()
        if age > max_age:
            logger.debug(f"Cache miss (expired after {age:.1f}s): {key}")
            return None

    try:
        obj = cache.get(key, default=None)
    except Exception as exc:
        logger.warning(f"Failed to load cached object: {key}, {exc}")
        return None
    if obj is None:
        logger.debug(f"Cache miss (value not found): {key}")
        return None
    logger.debug(f"Cache hit: {key}")
    return obj


def clear_cache(pattern: Optional[str] = None) -> int:
    """Clear cache entries whose key contains the given pattern.

    Args:
        pattern: Optional substring to match, or None for all entries

    Returns:
        Number of entries removed
    """
    cache = get_cache()
    if pattern is None:
        count = len(cache)
        cache.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    keys_to_delete = [key for key in cache if pattern in str(key)]
    for key in keys_to_delete:
        try:
            del cache[key]
        except KeyError:
            continue
    logger.info(f"Cleared {len(keys_to_delete)} cache entries matching '{pattern}'")
    return len(keys_to_delete)


def get_cache_stats() -> Dict[str, Any]:
    """Get statistics about the cache.

    Returns:
        Dictionary with cache statistics
    """
    cache_dir = get_cache_directory()
    stats: Dict[str, Any] = {
        "namespace": str(cache_dir),
        "total_size_bytes": 0,
        "db_file_count": 0,
        "entry_count": 0,
        "meta_count": 0,
        "prefix_counts": {},
    }

    for root, _, files in os.walk(cache_dir):
        for file_name in files:
            stats["db_file_count"] += 1
            try:
                stats["total_size_bytes"] += (Path(root) / file_name).stat().st_size
            except OSError:
                continue

    prefix_counts: Dict[str, int] = defaultdict(int)
    for key in get_cache():
        key_str = str(key)
        if key_str.endswith(META_SUFFIX):
            stats["meta_count"] += 1
            continue
        stats["entry_count"] += 1
        prefix_counts[key_str.rsplit("_", 1)[0]] += 1
    stats["prefix_counts"] = dict(prefix_counts)

    return stats


def cached(
    prefix: Optional[str] = None,
    key_args: Optional[List[str]] = None,
    max_age: Optional[int] = None,
):
    """Decorator to cache function results based on arguments.

    Arguments naming existing files are replaced in the key by their base
    name, and the content of those files forms the validation checksum.
    Calls without any file argument are not cached. Pass
    ``refresh_cache=True`` to ignore and overwrite a cached result.

    Args:
        prefix: Optional prefix for the cache key (defaults to function name)
        key_args: Argument names to include in the cache key (default: all)
        max_age: Maximum age of cache in seconds

    Returns:
        Decorated function with caching
    """
    def decorator(func: Callable) -> Callable:
        func_prefix = prefix or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            refresh = kwargs.pop("refresh_cache", False)
            cache_key, file_checksum = _create_cache_key(func, func_prefix, args, kwargs, key_args)

            if not refresh and file_checksum:
                cached_result = load_cache(cache_key, file_checksum, max_age=max_age)
                if cached_result is not None:
                    logger.info(f"Using cached result for {func.__name__}")
                    return cached_result

            start_time = time.time()
            result = func(*args, **kwargs)
            elapsed = time.time() - start_time

            if file_checksum:
                save_cache(cache_key, result, file_checksum, metadata={
                    "function": func.__name__,
                    "execution_time": elapsed,
                })
                logger.debug(f"Cached result for {func.__name__} (took {elapsed:.2f}s)")
            return result

        return wrapper

    return decorator


def _create_cache_key(
    func: Callable,
    prefix: str,
    args: Tuple,
    kwargs: Dict[str, Any],
    key_args: Optional[List[str]],
) -> Tuple[str, str]:
    """Generate a cache key and file checksum for a function call.

    Returns:
        Tuple of (cache_key, file_checksum)
    """
    bound = inspect.signature(func).bind(*args, **kwargs)
    bound.apply_defaults()
    arg_dict = dict(bound.arguments)
    if key_args:
        arg_dict = {k: v for k, v in arg_dict.items() if k in key_args}

    file_paths = []
    for k, v in list(arg_dict.items()):
        if isinstance(v, (str, Path)) and os.path.isfile(v):
            file_paths.append(str(v))
            arg_dict[k] = f"__PATH__:{os.path.basename(v)}"

    arg_hash = hashlib.md5(repr(sorted(arg_dict.items())).encode()).hexdigest()
    cache_key = f"{prefix}_{arg_hash}"
    file_checksum = compute_checksum(file_paths) if file_paths else ""
    return cache_key, file_checksum
