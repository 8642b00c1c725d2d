import datetime
import random
import string
import time

import dateutil.tz

_ID_ALPHABET = string.digits + string.ascii_lowercase
_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=dateutil.tz.tzutc())
_ONE_MILLI = datetime.timedelta(milliseconds=1)


def utcNow():
    return datetime.datetime.now(dateutil.tz.tzutc())


def nowMillis():
    return int(time.time() * 1000)


def dateTimeToMillis(dtObj):
    if dtObj is None:
        return None
    if dtObj.tzinfo is None:
        dtObj = dtObj.replace(tzinfo=dateutil.tz.tzutc())
    return (dtObj - _EPOCH) // _ONE_MILLI


def millisToDateTime(millis):
    if millis is None:
        return None
    return _EPOCH + datetime.timedelta(milliseconds=millis)


def generateJobId(prefix=None):
    """Return an id of the form "<prefix>-<epoch ms>-<6 base36 chars>"."""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(6))
    return "{}-{}-{}".format(prefix or "job", nowMillis(), suffix)
