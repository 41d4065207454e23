from __future__ import annotations

import boto3

from .settings import Settings


def aws_session(settings: Settings) -> boto3.session.Session:
    return boto3.session.Session(region_name=settings.aws_region or "us-east-1")


def dynamodb_resource(settings: Settings):
    return aws_session(settings).resource("dynamodb")


def cognito_client(settings: Settings):
    region = settings.cognito_region or settings.aws_region
    return aws_session(settings).client("cognito-idp", region_name=region)
