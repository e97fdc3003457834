from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Text, ForeignKey, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class Client(Base):
    __tablename__ = "client"

    id = Column(Integer, primary_key=True)
    nom = Column(String, nullable=False)
    marge_brute = Column(Float)  # percent
    marge_nette = Column(Float)  # percent

    projets = relationship("Projet", back_populates="client")


class Projet(Base):
    __tablename__ = "projet"

    id = Column(Integer, primary_key=True)
    nom = Column(String, nullable=False)
    client_id = Column(Integer, ForeignKey("client.id", ondelete="SET NULL"))
    cout = Column(Float, nullable=False, default=0.0)
    prix_vente = Column(Float, nullable=False, default=0.0)
    cree_le = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    client = relationship("Client", back_populates="projets")
    lots = relationship(
        "ProjetLot", back_populates="projet", cascade="all",
        order_by="ProjetLot.id",
    )


class LotCatalogue(Base):
    __tablename__ = "lot_catalogue"

    id = Column(Integer, primary_key=True)
    libelle = Column(String, nullable=False)
    libelle_normalise = Column(String, nullable=False, unique=True)


class ProjetLot(Base):
    __tablename__ = "lot_per_project"

    id = Column(Integer, primary_key=True)
    projet_id = Column(Integer, ForeignKey("projet.id", ondelete="CASCADE"), nullable=False)
    lot_catalogue_id = Column(Integer, ForeignKey("lot_catalogue.id"), nullable=False)
    total = Column(Float, nullable=False, default=0.0)
    total_vente = Column(Float, nullable=False, default=0.0)

    projet = relationship("Projet", back_populates="lots")
    lot_catalogue = relationship("LotCatalogue")
    ouvrages = relationship(
        "Ouvrage", back_populates="projet_lot", cascade="all",
        order_by="Ouvrage.id",
    )

    __table_args__ = (
        UniqueConstraint("projet_id", "lot_catalogue_id", name="uq_lot_per_project"),
        Index("idx_lot_per_project_projet", "projet_id"),
    )


class Ouvrage(Base):
    __tablename__ = "ouvrage"

    # Ids come from the identifier space arbiter, never from autoincrement.
    id = Column(Integer, primary_key=True, autoincrement=False)
    projet_lot_id = Column(
        Integer,
        ForeignKey("lot_per_project.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    nom = Column(String, nullable=False)
    designation = Column(String)
    total = Column(Float, nullable=False, default=0.0)
    cree_le = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    projet_lot = relationship("ProjetLot", back_populates="ouvrages")
    blocs = relationship(
        "Bloc", back_populates="ouvrage", cascade="all",
        order_by="Bloc.id",
    )
    liens = relationship("LienStructure", back_populates="ouvrage", cascade="all")

    __table_args__ = (
        Index("idx_ouvrage_projet_lot", "projet_lot_id"),
    )


class Bloc(Base):
    __tablename__ = "bloc"

    id = Column(Integer, primary_key=True, autoincrement=False)
    projet_id = Column(Integer, ForeignKey("projet.id", ondelete="CASCADE"), nullable=False)
    # NULL only for legacy standalone blocs
    ouvrage_id = Column(
        Integer, ForeignKey("ouvrage.id", ondelete="CASCADE", onupdate="CASCADE"),
    )
    nom = Column(String, nullable=False)
    unite = Column(String)
    quantite = Column(Float, nullable=False, default=0.0)
    prix_unitaire = Column(Float)  # total / quantite, NULL when quantite <= 0
    total = Column(Float, nullable=False, default=0.0)
    designation = Column(String)

    ouvrage = relationship("Ouvrage", back_populates="blocs")
    liens = relationship("LienStructure", back_populates="bloc", cascade="all")

    __table_args__ = (
        Index("idx_bloc_ouvrage", "ouvrage_id"),
        Index("idx_bloc_projet", "projet_id"),
    )


class LienStructure(Base):
    __tablename__ = "structure_link"

    id = Column(Integer, primary_key=True)
    ouvrage_id = Column(
        Integer,
        ForeignKey("ouvrage.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    bloc_id = Column(Integer, ForeignKey("bloc.id", ondelete="CASCADE", onupdate="CASCADE"))

    ouvrage = relationship("Ouvrage", back_populates="liens")
    bloc = relationship("Bloc", back_populates="liens")
    articles = relationship(
        "ArticleProjet", back_populates="lien", cascade="all",
        order_by="ArticleProjet.id",
    )

    __table_args__ = (
        UniqueConstraint("ouvrage_id", "bloc_id", name="uq_structure_link_pair"),
        # NULLs are distinct in unique constraints: guard the (ouvrage, NULL) link separately
        Index(
            "uq_structure_link_ouvrage_seul", "ouvrage_id", unique=True,
            sqlite_where=text("bloc_id IS NULL"),
            postgresql_where=text("bloc_id IS NULL"),
        ),
        Index("idx_structure_link_bloc", "bloc_id"),
    )


class ArticleCatalogue(Base):
    __tablename__ = "article_catalogue"

    id = Column(Integer, primary_key=True)
    libelle = Column(Text, nullable=False)
    unite = Column(String)
    prix_unitaire = Column(Float)


class ArticleProjet(Base):
    __tablename__ = "article"

    id = Column(Integer, primary_key=True)
    structure_link_id = Column(
        Integer, ForeignKey("structure_link.id", ondelete="CASCADE"), nullable=False,
    )
    article_catalogue_id = Column(Integer, ForeignKey("article_catalogue.id", ondelete="SET NULL"))
    quantite = Column(Float, nullable=False, default=0.0)
    prix_unitaire = Column(Float, nullable=False, default=0.0)
    tva = Column(Float, nullable=False, default=0.0)  # percent
    total_ht = Column(Float, nullable=False, default=0.0)
    total_ttc = Column(Float, nullable=False, default=0.0)
    localisation = Column(Text)
    description = Column(Text)
    designation = Column(String)
    cree_le = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    lien = relationship("LienStructure", back_populates="articles")
    article_catalogue = relationship("ArticleCatalogue")

    __table_args__ = (
        Index("idx_article_structure_link", "structure_link_id"),
        Index("idx_article_catalogue", "article_catalogue_id"),
    )


class EvenementProjetLog(Base):
    __tablename__ = "evenement_projet"

    id = Column(Integer, primary_key=True)
    projet_id = Column(Integer, nullable=False)  # no FK: events outlive deleted projects
    action = Column(String, nullable=False)
    cible = Column(String, nullable=False)
    details_json = Column(Text, nullable=False, default="{}")
    cree_le = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_evenement_projet_projet", "projet_id"),
    )
