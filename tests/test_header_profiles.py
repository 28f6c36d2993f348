"""Header profile resolution tests."""
import unittest

from header_profiles import (
    ANY_ACCEPT,
    DEFAULT_USER_AGENT,
    HTML_ACCEPT,
    HeaderRule,
    build_headers,
    find_embed_token,
    is_analytics_host,
    make_profile,
    resolve,
    upgrade_referer,
)

TOKEN = '0123456789abcdef0123'


class TestRuleMatching(unittest.TestCase):

    def test_default_profile(self):
        profile = resolve('https://unknown.example/video.mp4')
        self.assertEqual(profile.user_agent, DEFAULT_USER_AGENT)
        self.assertIsNone(profile.referer)
        self.assertIsNone(profile.origin)
        self.assertEqual(profile.extra_headers, {})

    def test_subdomain_matches_host_rule(self):
        profile = resolve('https://c3.megacloud.club/hls/seg-1.ts')
        self.assertEqual(profile.referer, 'https://megacloud.blog/')
        self.assertEqual(profile.origin, 'https://megacloud.blog')

    def test_path_prefix_rule(self):
        embed = resolve('https://megacloud.blog/embed-2/v3/e-1/abc?k=1')
        other = resolve('https://megacloud.blog/js/player.min.js')
        self.assertEqual(embed.accept, HTML_ACCEPT)
        self.assertEqual(other.accept, ANY_ACCEPT)

    def test_first_match_wins(self):
        rules = [
            HeaderRule('site.example', None, make_profile(referer='https://first.example/')),
            HeaderRule('site.example', None, make_profile(referer='https://second.example/')),
        ]
        self.assertEqual(resolve('https://site.example/a', rules=rules).referer, 'https://first.example/')

    def test_lookalike_host_does_not_match(self):
        self.assertIsNone(resolve('https://notmegacloud.blog/a.m3u8').referer)

    def test_rule_extra_headers(self):
        profile = resolve('https://hianime.to/ajax/v2/episode/sources?id=1')
        self.assertEqual(profile.extra_headers['X-Requested-With'], 'XMLHttpRequest')


class TestDeclaredReferer(unittest.TestCase):

    def test_declared_referer_overrides_rule(self):
        profile = resolve('https://megacloud.blog/a.js', 'https://megacloud.blog/embed-2/v3/e-1/xyz')
        self.assertEqual(profile.referer, 'https://megacloud.blog/embed-2/v3/e-1/xyz')
        self.assertEqual(profile.origin, 'https://megacloud.blog')

    def test_origin_derived_without_rule(self):
        profile = resolve('https://unknown.example/a.m3u8', 'https://embed.example/watch?v=1')
        self.assertEqual(profile.origin, 'https://embed.example')

    def test_bare_origin_upgraded_with_embed_token(self):
        target = f'https://cdn.example/e/{TOKEN}/master.m3u8'
        self.assertEqual(
            upgrade_referer('https://embed.example/', target),
            f'https://embed.example/embed-2/v3/e-1/{TOKEN}',
        )
        self.assertEqual(
            resolve(target, 'https://embed.example').referer,
            f'https://embed.example/embed-2/v3/e-1/{TOKEN}',
        )

    def test_bare_origin_kept_without_token(self):
        self.assertEqual(
            upgrade_referer('https://embed.example/', 'https://cdn.example/path/master.m3u8'),
            'https://embed.example/',
        )

    def test_referer_with_path_is_not_upgraded(self):
        self.assertEqual(
            upgrade_referer('https://embed.example/watch/1', f'https://cdn.example/{TOKEN}/a.ts'),
            'https://embed.example/watch/1',
        )

    def test_token_detection(self):
        self.assertEqual(find_embed_token(f'/e/{TOKEN}/master.m3u8'), TOKEN)
        self.assertEqual(find_embed_token(f'/e/{TOKEN}'), TOKEN)
        self.assertIsNone(find_embed_token('/e/abcdef/master.m3u8'))
        self.assertIsNone(find_embed_token(f'/e/{TOKEN}.m3u8'))
        self.assertIsNone(find_embed_token(f'/e/{TOKEN}xyz/a.ts'))


class TestHeaders(unittest.TestCase):

    def test_client_headers_forwarded(self):
        profile = resolve('https://unknown.example/v.mp4', client_headers={
            'Range': 'bytes=0-99',
            'X-Requested-With': 'XMLHttpRequest',
            'Cookie': 'secret=1',
        })
        self.assertEqual(profile.extra_headers, {
            'Range': 'bytes=0-99',
            'X-Requested-With': 'XMLHttpRequest',
        })

    def test_build_headers(self):
        headers = build_headers(resolve('https://c1.megacloud.club/a.ts', client_headers={'Range': 'bytes=5-'}))
        self.assertEqual(headers['Referer'], 'https://megacloud.blog/')
        self.assertEqual(headers['Origin'], 'https://megacloud.blog')
        self.assertEqual(headers['Range'], 'bytes=5-')
        self.assertEqual(headers['User-Agent'], DEFAULT_USER_AGENT)

    def test_build_headers_without_referer(self):
        headers = build_headers(resolve('https://unknown.example/a.ts'))
        self.assertNotIn('Referer', headers)
        self.assertNotIn('Origin', headers)

    def test_rules_are_not_mutated(self):
        resolve('https://c1.megacloud.club/a.ts', client_headers={'Range': 'bytes=5-'})
        self.assertNotIn('Range', resolve('https://c1.megacloud.club/a.ts').extra_headers)


class TestAnalyticsHosts(unittest.TestCase):

    def test_subdomains(self):
        self.assertTrue(is_analytics_host('www.google-analytics.com'))
        self.assertTrue(is_analytics_host('googletagmanager.com'))
        self.assertFalse(is_analytics_host('cdn.example'))
        self.assertFalse(is_analytics_host(None))


if __name__ == '__main__':
    unittest.main()
