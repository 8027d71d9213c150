"""Service Worker JavaScript for browser-side offline caching.

Mirrors the proxy's caching strategy inside the page:
- Install: pre-cache the manifest (all-or-nothing)
- Fetch: cache-first; write-through of 200 same-origin responses;
  offline page when the network fails
- Activate: delete every cache not named by the current version tag
"""

import json
import re
from collections.abc import Sequence
from string import Template

# Characters that end a JavaScript // comment.
_JS_LINE_TERMINATORS = re.compile("[\r\n\u2028\u2029]")

# SERVICE WORKER TEMPLATE
# Placeholders use $variable syntax and are substituted with JSON literals
# so paths and cache names are always valid JavaScript strings.

_SERVICE_WORKER_TEMPLATE = Template("""// Service Worker for offline caching
// Cache: $cache_name_comment

const CACHE_NAME = $cache_name;
const urlsToCache = $manifest;
const OFFLINE_URL = $fallback;

// Install event - cache manifest resources
self.addEventListener('install', (event) => {
    console.log('[SW] Installing', CACHE_NAME);
    event.waitUntil(
        caches.open(CACHE_NAME)
            .then((cache) => cache.addAll(urlsToCache))
    );
});

// Fetch event - cache-first
self.addEventListener('fetch', (event) => {
    if (event.request.method !== 'GET') {
        return;
    }

    event.respondWith(
        caches.open(CACHE_NAME).then((cache) => {
            return cache.match(event.request).then((cachedResponse) => {
                if (cachedResponse) {
                    return cachedResponse;
                }

                return fetch(event.request)
                    .then((response) => {
                        // Only cache complete same-origin responses
                        if (!response || response.status !== 200 || response.type !== 'basic') {
                            return response;
                        }

                        // Body can only be read once
                        const responseToCache = response.clone();
                        cache.put(event.request, responseToCache);
                        return response;
                    })
                    .catch(() => {
                        return cache.match(OFFLINE_URL).then((offline) => {
                            return offline || new Response('Offline', {
                                status: 503,
                                headers: { 'Content-Type': 'text/plain' }
                            });
                        });
                    });
            });
        })
    );
});

// Activate event - clean up old caches
self.addEventListener('activate', (event) => {
    console.log('[SW] Activating', CACHE_NAME);
    event.waitUntil(
        caches.keys().then((cacheNames) => {
            return Promise.all(
                cacheNames
                    .filter((cacheName) => cacheName !== CACHE_NAME)
                    .map((cacheName) => {
                        console.log('[SW] Deleting old cache:', cacheName);
                        return caches.delete(cacheName);
                    })
            );
        })
    );
});
""")


def render_service_worker(cache_name: str, manifest: Sequence[str], fallback_path: str) -> str:
    """Render the service worker script for the given cache configuration.

    Args:
        cache_name: Version tag of the cache; other caches are purged on activate.
        manifest: Paths pre-cached at install time.
        fallback_path: Offline page served when the network fails.
    """
    return _SERVICE_WORKER_TEMPLATE.substitute(
        cache_name_comment=_JS_LINE_TERMINATORS.sub(" ", cache_name),
        cache_name=json.dumps(cache_name),
        manifest=json.dumps(list(manifest), indent=4),
        fallback=json.dumps(fallback_path),
    )
