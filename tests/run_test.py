from __future__ import annotations

import asyncio
import logging
import multiprocessing
import os
import pathlib
import subprocess
import time
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest
import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect

from rtcsignal.config import SignalingServerConfig
from rtcsignal.messages import MessageType
from rtcsignal.messages import SignalingMessage
from rtcsignal.run import cli
from rtcsignal.run import periodic_status_logger
from rtcsignal.run import serve
from rtcsignal.server import SignalingServer
from testing.rtc import candidate_line
from testing.rtc import FakeConnectionFactory
from testing.utils import open_port


@pytest.mark.asyncio()
async def test_periodic_status_logger(caplog) -> None:
    caplog.set_level(logging.INFO)

    config = SignalingServerConfig(host='localhost', port=open_port())
    server = SignalingServer(
        config,
        connection_factory=FakeConnectionFactory(),
    )
    server.dispatcher._clients.add(1)
    server.engine.receive_candidate(
        SignalingMessage(
            type=MessageType.candidate,
            candidate=candidate_line(5000),
            sdpMid='0',
        ),
    )
    server.messenger.send_or_queue('queued')

    task = periodic_status_logger(server, 0.001)
    await asyncio.sleep(0.01)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    assert any(
        [
            'Connected clients: 1' in record.message
            and 'negotiation: idle' in record.message
            and 'channel: connecting' in record.message
            and 'queued messages: 1' in record.message
            and 'candidates applied/dropped/pending: 0/0/1' in record.message
            and record.levelname == 'INFO'
            for record in caplog.records
        ],
    )


def test_invoke() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'rtcsignal.run.serve',
        AsyncMock(),
    ) as mock_serve:
        runner.invoke(cli)
        mock_serve.assert_awaited_once()


def test_invoke_and_override_defaults(tmp_path: pathlib.Path) -> None:
    tmp_dir = os.path.join(tmp_path, 'log-dir')
    assert not os.path.isdir(tmp_dir)

    async def _mock_serve(config: SignalingServerConfig) -> None:
        assert config.host == 'test-host'
        assert config.port == 1234
        assert config.path == '/signal'
        assert config.ice_servers == ['stun:a:3478', 'turn:b:3478']
        assert config.media.video_source == 'video.mp4'
        assert config.logging.log_dir == str(tmp_dir)
        assert config.logging.default_level == logging.WARNING

    options: list[str] = []
    options += ['--host', 'test-host']
    options += ['--port', '1234']
    options += ['--path', '/signal']
    options += ['--ice-server', 'stun:a:3478']
    options += ['--ice-server', 'turn:b:3478']
    options += ['--video-source', 'video.mp4']
    options += ['--log-dir', str(tmp_dir)]
    options += ['--log-level', 'WARNING']

    runner = click.testing.CliRunner()
    with mock.patch(
        'rtcsignal.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve:
        result = runner.invoke(cli, options)
        mock_serve.assert_awaited_once()

    assert result.exit_code == 0
    assert os.path.isdir(tmp_dir)


def test_invoke_with_config_file(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'signaling.toml'
    SignalingServerConfig(port=4321, path='/rtc').write_toml(filepath)

    async def _mock_serve(config: SignalingServerConfig) -> None:
        assert config.port == 1234
        assert config.path == '/rtc'

    runner = click.testing.CliRunner()
    with mock.patch(
        'rtcsignal.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve:
        result = runner.invoke(
            cli,
            ['--config', str(filepath), '--port', '1234'],
        )
        mock_serve.assert_awaited_once()

    assert result.exit_code == 0


def test_logging_config(tmp_path: pathlib.Path) -> None:
    with subprocess.Popen(
        [
            'rtcsignal-server',
            '--host',
            'localhost',
            '--port',
            str(open_port()),
            '--log-dir',
            str(tmp_path),
            '--log-level',
            'INFO',
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        universal_newlines=True,
    ) as server_handle:
        # Wait for server to log that it is listening
        assert server_handle.stdout is not None
        for line in server_handle.stdout:  # pragma: no cover
            if 'Signaling server listening on' in line:
                break

        server_handle.terminate()
        server_handle.wait(1)

    sleep_time = 0.01
    max_wait_time = 1.0
    waited_time = 0.0
    while waited_time <= max_wait_time:  # pragma: no branch
        logs = [
            f
            for f in os.listdir(tmp_path)
            if os.path.isfile(os.path.join(tmp_path, f))
        ]
        if len(logs) >= 1:
            for log in logs:
                with open(os.path.join(tmp_path, log)) as f:
                    assert 'DEBUG' not in f.read()
            break
        elif waited_time >= max_wait_time:  # pragma: no cover
            raise TimeoutError('Timeout waiting for log file to be written.')
        else:  # pragma: no cover
            time.sleep(sleep_time)
            waited_time += sleep_time


def _serve(config: SignalingServerConfig) -> None:
    asyncio.run(serve(config))


@pytest.mark.asyncio()
async def test_serve_in_subprocess() -> None:
    config = SignalingServerConfig(
        host='127.0.0.1',
        port=open_port(),
        ice_servers=[],
    )
    address = f'ws://{config.host}:{config.port}{config.path}'

    process = multiprocessing.Process(target=_serve, args=(config,))
    process.start()

    async def _connect() -> ClientConnection:
        while True:
            try:
                return await connect(address)
            except OSError:  # pragma: no cover
                await asyncio.sleep(0.01)

    websocket = await asyncio.wait_for(_connect(), 5)

    pong_waiter = await websocket.ping()
    await asyncio.wait_for(pong_waiter, 1)

    process.terminate()

    with pytest.raises(websockets.exceptions.ConnectionClosedOK):
        await asyncio.wait_for(websocket.recv(), 5)

    process.join()
