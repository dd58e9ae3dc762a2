import unittest

from src.sitewatch.domain.templating import merge_template


class FormatRenderer:
    def __init__(self):
        self.scopes = []

    def render(self, expression, scope):
        self.scopes.append(dict(scope))
        return expression.format(**scope)


class MergeTemplateTests(unittest.TestCase):
    def test_without_template_result_is_row_minus_hidden(self):
        row = {"url": "/a", "title": "A", "secret": "s"}
        self.assertEqual(merge_template(row, ["secret"], None), {"url": "/a", "title": "A"})
        self.assertEqual(merge_template(row, [], {}), row)

    def test_template_sees_hidden_keys_and_overwrites_in_place(self):
        renderer = FormatRenderer()
        row = {"url": "/a", "title": "A", "host": "example.test"}
        template = {"url": "https://{host}{url}", "summary": "{title}!"}

        result = merge_template(row, ["host"], template, renderer)

        self.assertEqual(result, {"url": "https://example.test/a", "title": "A", "summary": "A!"})
        self.assertEqual(list(result), ["url", "title", "summary"])

    def test_row_values_shadow_context(self):
        renderer = FormatRenderer()
        merge_template({"title": "A"}, [], {"t": "{title}"}, renderer, context={"title": "ctx", "_url_": "u"})
        self.assertEqual(renderer.scopes[0], {"title": "A", "_url_": "u"})

    def test_template_requires_renderer(self):
        with self.assertRaises(ValueError):
            merge_template({"title": "A"}, [], {"t": "x"})


if __name__ == "__main__":
    unittest.main()
