"""Tests for the command-line interface."""

import os
import unittest
from unittest import mock

from pydantic import ValidationError

from zeroscaler.cli import load_config, main, parse_args


class TestParseArgs(unittest.TestCase):
    """Test cases for argument parsing."""

    def test_defaults_are_unset(self):
        """Test that options left out do not override the environment."""
        args = parse_args([])

        self.assertFalse(args.verbose)
        self.assertIsNone(args.listen_addr)
        self.assertIsNone(args.sts_name)
        self.assertIsNone(args.target_port)

    def test_options(self):
        args = parse_args(["-v", "--sts-name", "cache", "--sts-namespace", "ci", "--target-port", "1234"])

        self.assertTrue(args.verbose)
        self.assertEqual(args.sts_name, "cache")
        self.assertEqual(args.sts_namespace, "ci")
        self.assertEqual(args.target_port, 1234)


class TestLoadConfig(unittest.TestCase):
    """Test cases for combining environment and command-line configuration."""

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        config = load_config(parse_args([]))

        self.assertEqual(config.statefulset_name, "buildkitd")
        self.assertEqual(config.idle_timeout, 120.0)

    @mock.patch.dict(
        os.environ,
        {"ZEROSCALER_STATEFULSET_NAME": "from-env", "ZEROSCALER_IDLE_TIMEOUT": "5m", "ZEROSCALER_NAMESPACE": "ci"},
        clear=True,
    )
    def test_command_line_overrides_environment(self):
        """Test that command-line options take precedence over environment variables."""
        config = load_config(parse_args(["--sts-name", "from-cli", "--idle-timeout", "30s"]))

        self.assertEqual(config.statefulset_name, "from-cli")
        self.assertEqual(config.idle_timeout, 30.0)
        # Values without an option keep the environment value
        self.assertEqual(config.namespace, "ci")

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_invalid_option(self):
        with self.assertRaises(ValidationError):
            load_config(parse_args(["--target-port", "0"]))


@mock.patch.dict(os.environ, {}, clear=True)
@mock.patch("zeroscaler.cli.setup_logging")
class TestMain(unittest.TestCase):
    """Test cases for the main entry point."""

    def test_invalid_configuration(self, mock_setup_logging):
        """Test that an invalid configuration exits with an error."""
        self.assertEqual(main(["--idle-timeout", "forever"]), 1)

    @mock.patch("zeroscaler.cli.KubernetesConnection")
    def test_kubernetes_unavailable(self, mock_connection, mock_setup_logging):
        """Test that the proxy does not start without a Kubernetes client."""
        mock_connection.side_effect = RuntimeError("no configuration found")

        self.assertEqual(main([]), 1)

    @mock.patch("zeroscaler.cli.install_signal_handlers")
    @mock.patch("zeroscaler.cli.ProxyServer")
    @mock.patch("zeroscaler.cli.ScaleController")
    @mock.patch("zeroscaler.cli.StatefulSetClient")
    @mock.patch("zeroscaler.cli.KubernetesConnection")
    def test_run(
        self,
        mock_connection,
        mock_statefulset_client,
        mock_controller,
        mock_server,
        mock_install_signal_handlers,
        mock_setup_logging,
    ):
        """Test the startup and shutdown sequence."""
        self.assertEqual(main(["--kubeconfig", "/tmp/kubeconfig", "--shutdown-timeout", "10s"]), 0)

        mock_connection.assert_called_once_with(kubeconfig="/tmp/kubeconfig")
        mock_statefulset_client.assert_called_once_with(mock_connection.return_value)
        mock_controller.return_value.reconcile_on_startup.assert_called_once_with()
        server = mock_server.return_value
        mock_server.assert_called_once_with(mock_controller.return_value, ":8080")
        server.bind.assert_called_once_with()
        mock_install_signal_handlers.assert_called_once_with(server)
        server.serve_forever.assert_called_once_with()
        server.stop.assert_called_once_with()
        server.wait_for_sessions.assert_called_once_with(10.0)

    @mock.patch("zeroscaler.cli.ProxyServer")
    @mock.patch("zeroscaler.cli.ScaleController")
    @mock.patch("zeroscaler.cli.StatefulSetClient")
    @mock.patch("zeroscaler.cli.KubernetesConnection")
    def test_listen_failure(
        self, mock_connection, mock_statefulset_client, mock_controller, mock_server, mock_setup_logging
    ):
        mock_server.return_value.bind.side_effect = OSError("Address already in use")

        self.assertEqual(main([]), 1)
        mock_server.return_value.serve_forever.assert_not_called()


if __name__ == "__main__":
    unittest.main()
