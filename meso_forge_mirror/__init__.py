# SPDX-License-Identifier: GPL-3.0-or-later
APP_NAME = "meso-forge-mirror"
