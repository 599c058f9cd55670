import getopt
import json
import logging
import os
import sys
import threading
import time

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS

from ntperrors import NTPError
from ntpexchange import DEFAULT_TIMEOUT_SECS, NTP_PORT, get_offset_ms, get_time
from ntptime import apply_offset, read_local_clock, to_ntp

NTP_POLLING_RATE_SECONDS = 4
NTP_POLLING_ONCE_ONLY = -1

USAGE = 'ntp-monitor --ntpserver=SERVER|IP_ADDRESS [--port=NTP_PORT] [--polling=SECONDS] [--timeout=SECONDS]'

logging.basicConfig(level=logging.NOTSET, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger('ntpmonitor')


def format_utc(local):
    t = time.gmtime(local.seconds)
    return '{0}-{1:02}-{2:02}T{3:02}:{4:02}:{5:02}.{6:06}Z'.format(
        t.tm_year,
        t.tm_mon,
        t.tm_mday,
        t.tm_hour,
        t.tm_min,
        t.tm_sec,
        local.nanoseconds // 1000)


def get_ntp_metrics(host, port=NTP_PORT, timeout_sec=DEFAULT_TIMEOUT_SECS):
    server_time = get_time(host, port, timeout_sec)
    offset_ms = get_offset_ms(host, port, timeout_sec)
    corrected = apply_offset(read_local_clock(), offset_ms)

    ntp = to_ntp(server_time)

    metrics = {
        'server': host,
        'utc-time': format_utc(server_time),
        'ntp-time': ntp.coarse + ntp.fine / 4294967296.0,
        'offset-ms': offset_ms,
        'corrected-time': format_utc(corrected),
        }

    return metrics


def get_command_line(argv):
    host = None
    port = NTP_PORT
    polling = NTP_POLLING_RATE_SECONDS
    timeout = DEFAULT_TIMEOUT_SECS

    try:
        opts, args = getopt.getopt(argv, "h", ["ntpserver=", "port=", "polling=", "timeout="])
    except getopt.GetoptError as err:
        print('usage: ' + USAGE)
        logger.error('invalid command line: %s', err)
        sys.exit(2)

    for opt, arg in opts:
        if opt == '-h':
            print(USAGE)
            sys.exit()
        elif opt == "--ntpserver":
            host = arg
        elif opt == "--port":
            port = int(arg)
        elif opt == "--polling":
            polling = int(arg)
        elif opt == "--timeout":
            timeout = float(arg)

    return host, port, polling, timeout


def get_environment_args():
    host = os.getenv('NTP_SERVER')
    port = os.getenv('NTP_PORT')
    polling = os.getenv('NTP_POLLING_PERIOD_SECONDS')
    timeout = os.getenv('NTP_TIMEOUT_SECONDS')

    port = NTP_PORT if port is None else int(port)
    polling = NTP_POLLING_RATE_SECONDS if polling is None else int(polling)
    timeout = DEFAULT_TIMEOUT_SECS if timeout is None else float(timeout)

    logger.info(
        'env variables NTP_SERVER=%s, NTP_PORT=%s, NTP_POLLING_PERIOD_SECONDS=%s, NTP_TIMEOUT_SECONDS=%s',
        host, port, polling, timeout
    )

    return host, port, polling, timeout


def mask_token(token, unmasked_chars=5):
    if len(token) > unmasked_chars:
        return token[0:unmasked_chars] + '*' * (len(token) - unmasked_chars)
    # we have a short string, so mask everything
    return '*' * len(token)


def use_influx():

    # Assume we are using influx
    result = True

    bucket = os.getenv('INFLUXDB_V2_BUCKET')
    if not bucket:
        logger.warning("INFLUXDB_V2_BUCKET environment variable is not set. This must be set to use influx")
        result = False

    url = os.getenv('INFLUXDB_V2_URL')
    if not url:
        logger.warning("INFLUXDB_V2_URL environment variable is not set. This must be set to use influx")
        result = False

    token = os.getenv('INFLUXDB_V2_TOKEN')
    if not token:
        logger.warning("INFLUXDB_V2_TOKEN environment variable is not set. This must be set to use influx")
        result = False
    else:
        token = mask_token(token)

    org = os.getenv('INFLUXDB_V2_ORG')
    if not org:
        logger.warning("INFLUXDB_V2_ORG environment variable is not set. This must be set to use influx")
        result = False

    if result is True:
        logger.info(
            "found influxdb env variables. INFLUXDB_V2_BUCKET=%s, INFLUXDB_V2_URL=%s, INFLUXDB_V2_ORG=%s, INFLUXDB_V2_TOKEN=%s",
            bucket, url, org, token
        )

    return result


def send_to_influx(metrics):

    bucket = os.getenv('INFLUXDB_V2_BUCKET')

    logger.info('sending ntp metrics to influxdb')

    try:
        point = Point("ntp").tag("server", metrics["server"]).field(
            "offset-ms", metrics["offset-ms"]).time(metrics["utc-time"])

        client = InfluxDBClient.from_env_properties()
        write_api = client.write_api(write_options=SYNCHRONOUS)
        try:
            write_api.write(bucket=bucket, record=[point])
        finally:
            write_api.close()
            client.close()

    except Exception:
        logger.exception('a fatal exception happened while trying to send ntp metrics to influx')


def process(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    host, port, polling, timeout = get_environment_args()

    capture_metrics = use_influx()

    # if we don't have a host, then assume the
    # environment variables are not set, and try
    # to grab the config from the command line
    if host is None:
        host, port, polling, timeout = get_command_line(argv)

    if host is None:
        print("You must either set the NTP_SERVER/NTP_PORT environment variables OR")
        print("pass the --ntpserver/--port command line options")
        sys.exit(2)

    if timeout < 0:
        logger.error('invalid timeout=%s, it must be zero or positive', timeout)
        sys.exit(2)

    logger.info('using host=%s, port=%s, polling=%s, timeout=%s', host, port, polling, timeout)

    if polling == NTP_POLLING_ONCE_ONLY:
        try:
            metrics = get_ntp_metrics(host, port, timeout)
        except NTPError as err:
            logger.error('ntp query to host=%s, port=%s failed: %s', host, port, err)
            sys.exit(1)
        logger.info(json.dumps(metrics))
        if capture_metrics is True:
            send_to_influx(metrics)
        sys.exit(0)

    # We are using an event because a ctrl-c (or other signals)
    # will cause it to break out - i.e. more responsive than a sleep
    looping = threading.Event()

    bail = False
    while not bail:
        try:
            metrics = get_ntp_metrics(host, port, timeout)
            logger.info(json.dumps(metrics))

            if capture_metrics is True:
                send_to_influx(metrics)
        except NTPError as err:
            logger.error(
                'ntp query to host=%s, port=%s failed (%s): %s',
                host, port, type(err).__name__, err
            )

        logger.info("next polling period will be in %s seconds", polling)
        try:
            bail = looping.wait(polling)
        except KeyboardInterrupt:
            bail = True

    sys.exit(0)


if __name__ == '__main__':
    process()
