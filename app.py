#!/usr/bin/env python3
import logging
import os

import aws_cdk as cdk

from infrastructure.lib.deployment import build_app

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = cdk.App()

build_app(app)

app.synth()
