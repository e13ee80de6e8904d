# -*- coding: utf-8 -*-
"""
This modules purpose is to test the extsecrets-populate command line

"""

import logging
import os
import signal
import unittest
from unittest import mock

from extsecrets_populate import *
from extsecrets_populate import cli


def setup_module():
    logging.basicConfig(level=logging.DEBUG)


class TestMain(unittest.TestCase):

    def setUp(self):
        patcher = mock.patch("extsecrets_populate.cli.SecretPopulator")
        self.populator_class = patcher.start()
        self.addCleanup(patcher.stop)
        patcher = mock.patch("extsecrets_populate.cli.signal.signal")
        self.signal = patcher.start()
        self.addCleanup(patcher.stop)
        patcher = mock.patch.dict(os.environ, {}, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    @property
    def options(self):
        return self.populator_class.call_args[0][0]

    def test_defaults(self):
        self.assertEqual(0, cli.main([]))
        self.assertEqual("jx", self.options.namespace)
        self.assertEqual("jx", self.options.source_namespace)
        self.assertEqual("cluster", self.options.source)
        self.assertFalse(self.options.no_wait)
        self.assertEqual(RetryPolicy(), self.options.retry_policy)
        self.populator_class.return_value.run.assert_called_once_with()

    def test_arguments(self):
        cli.main(["--namespace", "tools", "--boot-secret-namespace", "secret-infra",
                  "--source", "filesystem", "--dir", "config-root/namespaces",
                  "--schema", "gs://bucket/schema.yaml", "--backend", "local",
                  "--no-wait", "--workers", "4", "--retry-steps", "3", "--retry-duration", "0.5"])
        options = self.options
        self.assertEqual("tools", options.namespace)
        self.assertEqual("secret-infra", options.source_namespace)
        self.assertEqual("filesystem", options.source)
        self.assertEqual("config-root/namespaces", options.dir)
        self.assertEqual("gs://bucket/schema.yaml", options.schema_file)
        self.assertEqual("local", options.backend_type)
        self.assertTrue(options.no_wait)
        self.assertEqual(4, options.workers)
        self.assertEqual(3, options.retry_policy.steps)
        self.assertEqual(0.5, options.retry_policy.duration)
        self.assertEqual(RetryPolicy.no_wait(), options.effective_retry_policy)

    def test_environment(self):
        os.environ.update({"EXTSECRETS_NAMESPACE": "from-env",
                           "EXTSECRETS_NO_WAIT": "yes",
                           "EXTSECRETS_DIR": "/defs"})
        cli.main(["--dir", "/override"])
        self.assertEqual("from-env", self.options.namespace)
        self.assertTrue(self.options.no_wait)
        self.assertEqual("/override", self.options.dir)

    def test_failed_definitions(self):
        result = PopulateResult([DefinitionOutcome(name="lighthouse-oauth-token", namespace="jx",
                                                   state=PopulateState.FAILED,
                                                   reasons=["oauth: source jx-boot.password not found"])])
        self.populator_class.return_value.run.side_effect = PopulateFailed(result)
        with mock.patch("sys.stderr") as stderr:
            self.assertEqual(1, cli.main([]))
        written = "".join(c[0][0] for c in stderr.write.call_args_list)
        self.assertIn("jx/lighthouse-oauth-token: oauth: source jx-boot.password not found", written)

    def test_load_error(self):
        self.populator_class.return_value.run.side_effect = PopulateError("definition directory missing")
        self.assertEqual(1, cli.main([]))

    def test_signals_cancel_the_run(self):
        cli.main([])
        handlers = {c[0][0]: c[0][1] for c in self.signal.call_args_list}
        self.assertEqual({signal.SIGTERM, signal.SIGINT}, set(handlers))
        handlers[signal.SIGTERM](signal.SIGTERM, None)
        self.populator_class.return_value.cancel.assert_called_once_with()


class TestMainConfigurationErrors(unittest.TestCase):

    def setUp(self):
        patcher = mock.patch("extsecrets_populate.cli.signal.signal")
        patcher.start()
        self.addCleanup(patcher.stop)
        patcher = mock.patch.dict(os.environ, {}, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def run_main(self, argv):
        with mock.patch("sys.stderr") as stderr:
            code = cli.main(argv)
        return code, "".join(c[0][0] for c in stderr.write.call_args_list)

    def test_missing_schema_file(self):
        code, written = self.run_main(["--schema", "/nonexistent/secret-schema.yaml"])
        self.assertEqual(1, code)
        self.assertIn("Error: invalid configuration", written)
        self.assertIn("secret-schema.yaml", written)

    def test_unknown_definition_source(self):
        os.environ["EXTSECRETS_SOURCE"] = "carrierPigeon"
        code, written = self.run_main([])
        self.assertEqual(1, code)
        self.assertIn("Error: invalid configuration", written)
        self.assertIn("carrierPigeon", written)


if __name__ == '__main__':
    unittest.main()
