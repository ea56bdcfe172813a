# SPDX-FileCopyrightText: 2026 gps_timesync contributors
# SPDX-License-Identifier: MIT

# Keep the system clock and time zone in step with a serial GPS receiver.
# Configure with GPS_TIMESYNC_* environment variables, for example
#   GPS_TIMESYNC_PORT=/dev/ttyACM0 GPS_TIMESYNC_DEBUG=1 sudo -E python3 gps_clock_sync.py
# Setting the clock and the time zone needs root.

import logging
import time

import gps_timesync

config = gps_timesync.TimeSyncConfig.from_env()
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

feed = gps_timesync.SerialNMEAFeed.from_config(config)
host = gps_timesync.LinuxHost.from_config(feed, config)

if feed.connect():
    # MTK receivers: turn on just RMC (date and time) and GGA (position)
    feed.send_command(b"PMTK314,0,1,0,1,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0")
    # Set update rate to once a second (1hz)
    feed.send_command(b"PMTK220,1000")

print("Set GPS as time source")
gps_timesync.AcquisitionController.from_config(host, config).start()

# Main loop just reads sentences from the GPS module; the controller reacts to
# them.  While the port is not open a retry is pending and the loop idles.
while True:
    if not feed.update():
        time.sleep(0.1)
