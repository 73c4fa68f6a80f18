import sys
import asyncio
import logging

from asyshare import logger
from asyshare._version import __banner__
from asyshare.errors import ShareError
from asyshare.lifecycle import ServerLifecycleManager
from asyshare.control import create_control_server


async def run_static_server(directory, host='127.0.0.1', port=8080, lookup_directory='./api',
                            log_directory='./log', save_logs=False, control_port=None):
    """
    Starts the file server and, optionally, the HTTP control endpoints on
    127.0.0.1:`control_port`. Runs until cancelled.
    Returns 1 if the server or the control endpoints could not be started.
    """
    manager = ServerLifecycleManager(
        lookup_directory=lookup_directory,
        log_directory=log_directory,
    )
    if save_logs is True:
        await manager.set_save_logs(True)

    result = await manager.start_server(directory, host, port)
    if result.success is False:
        print(result.message)
        return 1

    control_server = None
    control_task = None
    try:
        if control_port is not None:
            control_server = create_control_server(manager, '127.0.0.1', control_port)
            try:
                await control_server.listen()
            except ShareError as e:
                print(e.message)
                return 1
            control_task = asyncio.create_task(control_server.serve())
            logger.info('Control endpoints on http://127.0.0.1:%s/api/' % control_port)

        # the control endpoints may stop and restart the server, so only cancellation ends this
        await asyncio.Event().wait()
    finally:
        if control_task is not None:
            control_task.cancel()
        if control_server is not None:
            await control_server.terminate()
        if await manager.get_run_state() is True:
            await manager.stop_server()
    return 0


def main():
    import argparse

    parser = argparse.ArgumentParser(
        description='Static file server with upload and folder creation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s /srv/share                          # Serve /srv/share on 127.0.0.1:8080
  %(prog)s /srv/share --host 0.0.0.0           # Bind to all interfaces
  %(prog)s /srv/share --port 9000 --save-logs  # Custom port, keep a log file
  %(prog)s /srv/share --control-port 8090      # Also expose the /api/ control endpoints
        ''')
    parser.add_argument('directory', help='Directory to serve')
    parser.add_argument('--host', '-H', default='127.0.0.1', help='IP address to listen on (default: 127.0.0.1)')
    parser.add_argument('--port', '-p', default='8080', help='Port to listen on (default: 8080)')
    parser.add_argument('--lookup-dir', default='./api', help='Directory of the /lookup/ artifacts (default: ./api)')
    parser.add_argument('--log-dir', default='./log', help='Directory of log.txt when --save-logs is set (default: ./log)')
    parser.add_argument('--save-logs', action='store_true', help='Append every log message to <log-dir>/log.txt')
    parser.add_argument('--control-port', type=int, help='Serve the JSON control endpoints on 127.0.0.1:<port>')
    parser.add_argument('-v', '--verbose', action='count', default=0, help='Verbosity, can be stacked')
    parser.add_argument('-s', '--silent', action='store_true', help='Do not print banner')

    args = parser.parse_args()

    if args.silent is False:
        print(__banner__)

    if args.verbose > 0:
        logger.setLevel(logging.DEBUG)

    try:
        returncode = asyncio.run(run_static_server(
            args.directory,
            args.host,
            args.port,
            lookup_directory=args.lookup_dir,
            log_directory=args.log_dir,
            save_logs=args.save_logs,
            control_port=args.control_port,
        ))
    except KeyboardInterrupt:
        print('\nServer stopped by user')
        returncode = 0
    sys.exit(returncode)


if __name__ == '__main__':
    main()
